"""
Celery tasks for inventory cache synchronisation.

Tasks:
    - sync_inventory_cache: One reconciliation tick, scheduled by Celery Beat
"""
import logging

from celery import shared_task
from django.conf import settings

from core.cache import get_cache_layer, keys
from core.reconciliation import DEFAULT_INTERVAL, ReconciliationLoop
from core.store import Store

logger = logging.getLogger(__name__)


def build_sync_loop(store=None, cache=None, interval=None) -> ReconciliationLoop:
    """Reconciliation loop that republishes the item and order collections."""
    from orders.services import OrderService
    from .services import InventoryService

    store = store or Store()
    cache = cache or get_cache_layer()
    if interval is None:
        interval = getattr(settings, 'INVENTORY_SYNC_INTERVAL', DEFAULT_INTERVAL)

    inventory = InventoryService(store, cache)
    orders = OrderService(store, cache, inventory.associations)
    return ReconciliationLoop(
        store,
        cache,
        interval=interval,
        collection_loaders={
            keys.ITEMS: inventory.load_all_items,
            keys.ORDERS: orders.load_all_orders,
        },
        refresh_collections=getattr(settings, 'INVENTORY_SYNC_REFRESH_COLLECTIONS', True),
    )


@shared_task
def sync_inventory_cache():
    """
    Periodic task re-reading the store and republishing collection caches.

    Returns the counts seen, or a skipped status when the store was down.
    """
    counts = build_sync_loop().tick()
    if counts is None:
        return {'status': 'skipped'}
    return {'status': 'success', **counts}
