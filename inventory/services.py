"""
Inventory Service Layer - item reads and writes through the cache.

Reads go through CacheLayer.get_or_load. Writes commit to the store first,
then invalidate or pre-warm the affected keys before returning, so the
writer always reads its own write.
"""
import logging
from typing import Dict, List, Optional

from django.db.models import Q

from core.cache import CacheLayer, get_cache_layer, keys
from core.exceptions import ValidationFailed
from core.store import ITEM, Store
from .models import InventoryItem
from .serializers import item_snapshot, item_snapshots

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'quantity', 'location', 'price')


class InventoryService:
    """Cached CRUD and search for inventory items."""

    def __init__(self, store: Optional[Store] = None, cache: Optional[CacheLayer] = None,
                 associations=None):
        self.store = store or Store()
        self.cache = cache or get_cache_layer()
        if associations is None:
            from orders.services import AssociationManager
            associations = AssociationManager(self.store, self.cache)
        self.associations = associations

    # Loaders

    def load_all_items(self) -> List[Dict]:
        return item_snapshots(self.store.load_all(ITEM))

    # Reads

    def list_items(self) -> List[Dict]:
        return self.cache.get_or_load(keys.ITEMS, self.load_all_items, self.cache.collection_policy)

    def get_item(self, item_id: int) -> Dict:
        return self.cache.get_or_load(
            keys.item(item_id),
            lambda: item_snapshot(self.store.load_by_id(ITEM, item_id)),
            self.cache.entity_policy,
        )

    def search_items(self, term: str) -> List[Dict]:
        """
        Case-insensitive substring search on name and location.

        Results are cached per normalized term; an empty result is cached too.
        """
        if term is None or not term.strip():
            raise ValidationFailed({'searchTerm': ['Search term must not be blank']})
        normalized = keys.normalize_term(term)

        def load():
            predicate = Q(name__icontains=normalized) | Q(location__icontains=normalized)
            return item_snapshots(self.store.load_where(ITEM, predicate))

        return self.cache.get_or_load(keys.item_search(normalized), load, self.cache.query_policy)

    # Writes

    def create_item(self, name: str, quantity: int = 0, location: str = '', price=0) -> Dict:
        """
        Create an item. Any caller-supplied id is ignored.

        The whole-collection and search keys are invalidated, never overwritten
        with partial data; the new item's own key is pre-warmed.
        """
        item = InventoryItem.new(name, quantity, location, price)
        self.store.insert(item)
        snapshot = item_snapshot(item)

        self.cache.invalidate(keys.ITEMS)
        self.cache.invalidate_prefix(keys.ITEM_SEARCH_PREFIX)
        self.cache.put(keys.item(item.id), snapshot, self.cache.entity_policy)

        logger.info(f"Created inventory item #{item.id} ({item.name})")
        return snapshot

    def update_item(self, item_id: int, **changes) -> Dict:
        """Apply changes to name, quantity, location and/or price."""
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationFailed({field: ['Field cannot be updated'] for field in sorted(unknown)})

        item = self.store.load_by_id(ITEM, item_id)
        if 'name' in changes:
            item.name = changes['name']
        if 'quantity' in changes:
            item.update_quantity(changes['quantity'])
        if 'location' in changes:
            item.update_location(changes['location'])
        if 'price' in changes:
            item.update_price(changes['price'])
        self.store.update(item)
        snapshot = item_snapshot(item)

        self.cache.put(keys.item(item_id), snapshot, self.cache.entity_policy)
        self.cache.invalidate(keys.ITEMS)
        self.cache.invalidate_prefix(keys.ITEM_SEARCH_PREFIX)
        for order_id in self.store.linked_order_ids(item_id):
            self.cache.invalidate(keys.order_items(order_id))

        logger.info(f"Updated inventory item #{item_id}: {', '.join(sorted(changes))}")
        return snapshot

    def delete_item(self, item_id: int) -> None:
        """Delete an item together with every order link that references it."""
        self.associations.delete_item_cascade(item_id)
