"""
Error taxonomy shared by the store, cache and service layers.

Exceptions:
    - NotFound: referenced item, order or link target does not exist
    - ValidationFailed: entity failed attribute checks before any write
    - StoreUnavailable: database I/O failure
    - CacheUnavailable: cache backend failure (never surfaced to callers)
    - DuplicateLink: order/item link already present (normalized to a no-op)
"""
import logging
from typing import Dict, List, Optional

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base class for all service-level errors."""
    pass


class NotFound(InventoryError):
    """Raised when a referenced entity does not exist."""
    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class ValidationFailed(InventoryError):
    """Raised when an entity fails its attribute invariants."""
    def __init__(self, errors: Optional[Dict[str, List[str]]] = None, message: str = ''):
        self.errors = errors or {}
        if not message:
            message = "; ".join(
                f"{field}: {', '.join(msgs)}" for field, msgs in self.errors.items()
            ) or "Validation failed"
        super().__init__(message)


class StoreUnavailable(InventoryError):
    """Raised when the database cannot be reached or errors out."""
    pass


class CacheUnavailable(InventoryError):
    """Raised by cache backends; absorbed by the cache layer."""
    pass


class DuplicateLink(InventoryError):
    """Raised by the store when an (order, item) link already exists."""
    def __init__(self, order_id: int, item_id: int):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} is already linked to order {order_id}")


def api_exception_handler(exc, context):
    """
    DRF exception handler mapping service errors to API responses.

    Falls back to the default DRF handler for everything else.
    """
    if isinstance(exc, NotFound):
        return Response(
            {'error': 'Not Found', 'detail': str(exc)},
            status=status.HTTP_404_NOT_FOUND
        )
    if isinstance(exc, ValidationFailed):
        return Response(
            {'error': 'Validation Error', 'detail': str(exc), 'fields': exc.errors},
            status=status.HTTP_400_BAD_REQUEST
        )
    if isinstance(exc, StoreUnavailable):
        logger.error(f"Store unavailable while handling request: {exc}")
        return Response(
            {'error': 'Service Unavailable', 'detail': 'The data store is temporarily unavailable'},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return exception_handler(exc, context)
