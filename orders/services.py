"""
Order Service Layer - orders and the order/item association.

AssociationManager owns every change to OrderItemLink rows:
    - add_item: absent -> present (present -> present is a no-op)
    - remove_item: present -> absent (absent -> absent is a no-op)
    - delete_item_cascade / delete_order_cascade: present -> absent as a side
      effect of deleting either endpoint

Every mutation commits to the store before touching the cache, and the
affected keys are invalidated before the call returns. A store failure
propagates with the cache left untouched.
"""
import logging
from typing import Dict, List, Optional

from core.cache import CacheLayer, get_cache_layer, keys
from core.exceptions import DuplicateLink, NotFound, ValidationFailed
from core.store import ITEM, ORDER, Store
from inventory.serializers import item_snapshots
from .models import Order, UNKNOWN_CUSTOMER
from .serializers import order_snapshot, order_snapshots

logger = logging.getLogger(__name__)


class AssociationManager:
    """Maintains order/item links and the cache entries that depend on them."""

    def __init__(self, store: Optional[Store] = None, cache: Optional[CacheLayer] = None):
        self.store = store or Store()
        self.cache = cache or get_cache_layer()

    def _require(self, kind: str, entity_id: int) -> None:
        if not self.store.exists(kind, entity_id):
            raise NotFound(kind, entity_id)

    def _invalidate_order(self, order_id: int) -> None:
        self.cache.invalidate(keys.order_items(order_id), keys.order(order_id), keys.ORDERS)

    def add_item(self, order_id: int, item_id: int) -> bool:
        """
        Link an item to an order.

        Returns True if a link was created, False if it already existed.

        Raises:
            NotFound: If the order or the item does not exist
        """
        self._require(ORDER, order_id)
        self._require(ITEM, item_id)

        if self.store.link_exists(order_id, item_id):
            logger.debug(f"Item #{item_id} already linked to order #{order_id}")
            return False

        try:
            self.store.insert_link(order_id, item_id)
        except DuplicateLink:
            # Lost an insert race; the link is present either way
            logger.debug(f"Concurrent insert linked item #{item_id} to order #{order_id} first")
            return False

        self._invalidate_order(order_id)
        logger.info(f"Linked item #{item_id} to order #{order_id}")
        return True

    def remove_item(self, order_id: int, item_id: int) -> bool:
        """
        Unlink an item from an order.

        Returns True if a link was removed, False if there was none.

        Raises:
            NotFound: If the order does not exist
        """
        self._require(ORDER, order_id)

        removed = self.store.delete_link(order_id, item_id)
        if not removed:
            logger.debug(f"Item #{item_id} was not linked to order #{order_id}")
            return False

        self._invalidate_order(order_id)
        logger.info(f"Unlinked item #{item_id} from order #{order_id}")
        return True

    def delete_item_cascade(self, item_id: int) -> List[int]:
        """
        Delete an item and every link referencing it. Orders are kept.

        Returns the ids of the orders that lost a link.
        """
        order_ids = self.store.delete(ITEM, item_id)

        self.cache.invalidate(keys.item(item_id), keys.ITEMS, keys.ORDERS)
        self.cache.invalidate_prefix(keys.ITEM_SEARCH_PREFIX)
        for order_id in order_ids:
            self.cache.invalidate(keys.order(order_id), keys.order_items(order_id))

        logger.info(f"Deleted inventory item #{item_id}, unlinked from {len(order_ids)} orders")
        return order_ids

    def delete_order_cascade(self, order_id: int) -> List[int]:
        """
        Delete an order and its links. Linked items are kept.

        Returns the ids of the items that were linked.
        """
        item_ids = self.store.delete(ORDER, order_id)

        self._invalidate_order(order_id)
        logger.info(f"Deleted order #{order_id} with {len(item_ids)} item links")
        return item_ids

    def order_items(self, order_id: int) -> List[Dict]:
        """Snapshots of the items linked to an order (cached)."""
        def load():
            self._require(ORDER, order_id)
            return item_snapshots(self.store.linked_items(order_id))

        return self.cache.get_or_load(keys.order_items(order_id), load, self.cache.entity_policy)

    def link_count(self, order_id: int) -> int:
        return self.store.link_count(order_id)


class OrderService:
    """Cached CRUD for orders. Link changes are delegated to AssociationManager."""

    def __init__(self, store: Optional[Store] = None, cache: Optional[CacheLayer] = None,
                 associations: Optional[AssociationManager] = None):
        self.store = store or Store()
        self.cache = cache or get_cache_layer()
        self.associations = associations or AssociationManager(self.store, self.cache)

    def load_all_orders(self) -> List[Dict]:
        return order_snapshots(self.store.load_all(ORDER))

    def list_orders(self) -> List[Dict]:
        return self.cache.get_or_load(keys.ORDERS, self.load_all_orders, self.cache.collection_policy)

    def get_order(self, order_id: int) -> Dict:
        return self.cache.get_or_load(
            keys.order(order_id),
            lambda: order_snapshot(self.store.load_by_id(ORDER, order_id)),
            self.cache.entity_policy,
        )

    def create_order(self, customer_name: Optional[str] = None, date_placed=None) -> Dict:
        """Create an order; a missing customer name becomes 'unknown'."""
        order = Order.new(customer_name, date_placed)
        self.store.insert(order)
        snapshot = order_snapshot(order)

        self.cache.invalidate(keys.ORDERS)
        self.cache.put(keys.order(order.id), snapshot, self.cache.entity_policy)

        logger.info(f"Created order #{order.id} for {order.customer_name}")
        return snapshot

    def update_order(self, order_id: int, **changes) -> Dict:
        """Update customer name and/or date placed."""
        unknown = set(changes) - {'customer_name', 'date_placed'}
        if unknown:
            raise ValidationFailed({field: ['Field cannot be updated'] for field in sorted(unknown)})

        order = self.store.load_by_id(ORDER, order_id)
        if 'customer_name' in changes:
            order.customer_name = (changes['customer_name'] or '').strip() or UNKNOWN_CUSTOMER
        if changes.get('date_placed') is not None:
            order.date_placed = changes['date_placed']
        self.store.update(order)
        snapshot = order_snapshot(order)

        self.cache.put(keys.order(order_id), snapshot, self.cache.entity_policy)
        self.cache.invalidate(keys.ORDERS)

        logger.info(f"Updated order #{order_id}")
        return snapshot

    def delete_order(self, order_id: int) -> None:
        self.associations.delete_order_cascade(order_id)

    def order_summary(self, order_id: int) -> str:
        return self.store.load_by_id(ORDER, order_id).summary()
