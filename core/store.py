"""
Store - durable source of truth for items, orders and their links.

Thin wrapper over the Django ORM addressed by entity kind. Database failures
surface as StoreUnavailable, failed model validation as ValidationFailed and
duplicate link inserts as DuplicateLink.
"""
import logging
from functools import wraps
from typing import List

from django.apps import apps
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction

from .exceptions import DuplicateLink, NotFound, StoreUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

ITEM = 'inventory_item'
ORDER = 'order'

MODELS = {
    ITEM: ('inventory', 'InventoryItem'),
    ORDER: ('orders', 'Order'),
}


def store_call(func):
    """Translate database failures into StoreUnavailable."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError:
            raise
        except DatabaseError as e:
            logger.error(f"Store call {func.__name__} failed: {e}")
            raise StoreUnavailable(str(e)) from e
    return wrapper


class Store:
    """Relational store access for the inventory and order services."""

    def model(self, kind: str):
        try:
            app_label, model_name = MODELS[kind]
        except KeyError:
            raise ValueError(f"Unknown entity kind: {kind}")
        return apps.get_model(app_label, model_name)

    def _link_model(self):
        return apps.get_model('orders', 'OrderItemLink')

    def _kind_of(self, entity) -> str:
        for kind in MODELS:
            if isinstance(entity, self.model(kind)):
                return kind
        raise ValueError(f"Unsupported entity: {entity!r}")

    @staticmethod
    def _validate(entity) -> None:
        try:
            entity.full_clean()
        except ValidationError as e:
            raise ValidationFailed(getattr(e, 'message_dict', {'__all__': e.messages})) from e

    # Reads

    @store_call
    def load_all(self, kind: str) -> List:
        return list(self.model(kind).objects.all().order_by('id'))

    @store_call
    def load_by_id(self, kind: str, entity_id: int):
        model = self.model(kind)
        try:
            return model.objects.get(pk=entity_id)
        except model.DoesNotExist:
            raise NotFound(kind, entity_id)

    @store_call
    def load_where(self, kind: str, predicate) -> List:
        """Load entities matching a Q object (or dict of field lookups)."""
        queryset = self.model(kind).objects.all()
        if isinstance(predicate, dict):
            queryset = queryset.filter(**predicate)
        else:
            queryset = queryset.filter(predicate)
        return list(queryset.order_by('id'))

    @store_call
    def exists(self, kind: str, entity_id: int) -> bool:
        return self.model(kind).objects.filter(pk=entity_id).exists()

    @store_call
    def count(self, kind: str) -> int:
        return self.model(kind).objects.count()

    # Writes

    @store_call
    def insert(self, entity) -> int:
        """Insert a new entity and return the generated id."""
        if entity.pk is not None:
            raise ValueError("New entities must not carry an id")
        self._validate(entity)
        with transaction.atomic():
            entity.save(force_insert=True)
        logger.info(f"Inserted {self._kind_of(entity)} #{entity.pk}")
        return entity.pk

    @store_call
    def update(self, entity) -> None:
        kind = self._kind_of(entity)
        if entity.pk is None:
            raise ValueError("Cannot update an entity without an id")
        self._validate(entity)
        with transaction.atomic():
            if not type(entity).objects.filter(pk=entity.pk).exists():
                raise NotFound(kind, entity.pk)
            entity.save(force_update=True)
        logger.info(f"Updated {kind} #{entity.pk}")

    @store_call
    def delete(self, kind: str, entity_id: int) -> List[int]:
        """
        Delete an entity; its order/item links are removed in the same transaction.

        Links are read under a row lock on the entity. Returns the ids on the
        other side of the removed links.
        """
        model = self.model(kind)
        link_field, other_field = ('item_id', 'order_id') if kind == ITEM else ('order_id', 'item_id')
        with transaction.atomic():
            if model.objects.select_for_update().filter(pk=entity_id).first() is None:
                raise NotFound(kind, entity_id)
            linked_ids = list(
                self._link_model().objects.filter(**{link_field: entity_id})
                .order_by(other_field).values_list(other_field, flat=True)
            )
            model.objects.filter(pk=entity_id).delete()
        logger.info(f"Deleted {kind} #{entity_id} and {len(linked_ids)} order item links")
        return linked_ids

    # Links

    @store_call
    def insert_link(self, order_id: int, item_id: int) -> None:
        link_model = self._link_model()
        try:
            with transaction.atomic():
                link_model.objects.create(order_id=order_id, item_id=item_id)
        except IntegrityError as e:
            if link_model.objects.filter(order_id=order_id, item_id=item_id).exists():
                raise DuplicateLink(order_id, item_id) from e
            if not self.exists(ORDER, order_id):
                raise NotFound(ORDER, order_id) from e
            raise NotFound(ITEM, item_id) from e

    @store_call
    def delete_link(self, order_id: int, item_id: int) -> bool:
        deleted, _ = self._link_model().objects.filter(order_id=order_id, item_id=item_id).delete()
        return deleted > 0

    @store_call
    def link_exists(self, order_id: int, item_id: int) -> bool:
        return self._link_model().objects.filter(order_id=order_id, item_id=item_id).exists()

    @store_call
    def link_count(self, order_id: int) -> int:
        return self._link_model().objects.filter(order_id=order_id).count()

    @store_call
    def linked_items(self, order_id: int) -> List:
        """Items linked to an order, resolved by id."""
        item_ids = self._link_model().objects.filter(order_id=order_id).values_list('item_id', flat=True)
        return list(self.model(ITEM).objects.filter(pk__in=list(item_ids)).order_by('id'))

    @store_call
    def linked_order_ids(self, item_id: int) -> List[int]:
        return list(
            self._link_model().objects.filter(item_id=item_id)
            .order_by('order_id').values_list('order_id', flat=True)
        )
