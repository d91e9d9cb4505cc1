"""
Cache-aside layer over the inventory/order store.

Three access patterns share one mechanism:
    - whole collections ("inventory_items", "orders")
    - single entities ("inventory_item_42", "order_7", "order_7_items")
    - query results ("inventory_items_search_widget")

The store stays authoritative. Every entry is a snapshot that can be dropped
and rebuilt at any time, and a failing cache backend only ever costs a store
round trip.
"""
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from .cache_backends import CacheBackend, build_cache_backend
from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)


class keys:
    """Cache key naming shared by every deployment using the same namespace."""
    ITEMS = 'inventory_items'
    ITEM_SEARCH_PREFIX = 'inventory_items_search_'
    ORDERS = 'orders'

    @staticmethod
    def item(item_id: int) -> str:
        return f"inventory_item_{item_id}"

    @staticmethod
    def normalize_term(term: str) -> str:
        return term.strip().lower()

    @staticmethod
    def item_search(term: str) -> str:
        return f"{keys.ITEM_SEARCH_PREFIX}{keys.normalize_term(term)}"

    @staticmethod
    def order(order_id: int) -> str:
        return f"order_{order_id}"

    @staticmethod
    def order_items(order_id: int) -> str:
        return f"order_{order_id}_items"


class CachePolicy:
    """
    Expiration policy for one class of keys.

    absolute_ttl: seconds from creation after which the entry is gone
    sliding: seconds of inactivity after which the entry is gone
    """

    def __init__(self, absolute_ttl: Optional[float] = None, sliding: Optional[float] = None):
        self.absolute_ttl = absolute_ttl
        self.sliding = sliding

    @classmethod
    def from_settings(cls, config: Dict[str, Any]) -> 'CachePolicy':
        return cls(
            absolute_ttl=config.get('ABSOLUTE_TTL'),
            sliding=config.get('SLIDING'),
        )

    def __eq__(self, other):
        return (
            isinstance(other, CachePolicy)
            and self.absolute_ttl == other.absolute_ttl
            and self.sliding == other.sliding
        )

    def __repr__(self):
        return f"CachePolicy(absolute_ttl={self.absolute_ttl}, sliding={self.sliding})"


DEFAULT_POLICIES = {
    'collection': CachePolicy(sliding=60),
    'entity': CachePolicy(absolute_ttl=30 * 60, sliding=10 * 60),
    'query': CachePolicy(absolute_ttl=30 * 60, sliding=10 * 60),
}


class CacheLayer:
    """
    Read-through / write-through facade over a CacheBackend.

    Backend failures are logged and absorbed: reads fall back to the loader,
    writes to the cache are skipped.
    """

    def __init__(self, backend: CacheBackend, policies: Optional[Dict[str, CachePolicy]] = None):
        self.backend = backend
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)

    @property
    def collection_policy(self) -> CachePolicy:
        return self.policies['collection']

    @property
    def entity_policy(self) -> CachePolicy:
        return self.policies['entity']

    @property
    def query_policy(self) -> CachePolicy:
        return self.policies['query']

    # Serialization

    def _encode(self, value):
        if not self.backend.serializes:
            return value
        return json.dumps(value, cls=DjangoJSONEncoder).encode('utf-8')

    def _decode(self, raw):
        if not self.backend.serializes:
            return raw
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        return json.loads(raw)

    # Operations

    def get_or_load(self, key: str, loader: Callable[[], Any],
                    policy: Optional[CachePolicy] = None) -> Any:
        """
        Return the cached snapshot for key, loading it from the store on miss.

        On a hit the loader is not called and the sliding expiry is restarted.
        On a miss the loader is called exactly once and its result cached.
        Loader exceptions propagate and nothing is cached.
        """
        try:
            raw = self.backend.get(key)
        except CacheUnavailable as e:
            logger.warning(f"Cache read failed for '{key}', falling back to store: {e}")
            return loader()

        if raw is not None:
            try:
                value = self._decode(raw)
            except ValueError as e:
                logger.warning(f"Discarding undecodable cache entry '{key}': {e}")
            else:
                logger.debug(f"Cache hit: {key}")
                try:
                    self.backend.refresh_expiry(key)
                except CacheUnavailable as e:
                    logger.warning(f"Cache refresh failed for '{key}': {e}")
                return value

        logger.debug(f"Cache miss: {key}")
        value = loader()
        self.put(key, value, policy)
        return value

    def put(self, key: str, value: Any, policy: Optional[CachePolicy] = None) -> None:
        """Unconditionally (re)write an entry."""
        policy = policy or self.entity_policy
        try:
            self.backend.set(key, self._encode(value), ttl=policy.absolute_ttl, sliding=policy.sliding)
        except CacheUnavailable as e:
            logger.warning(f"Cache write failed for '{key}': {e}")

    def invalidate(self, *cache_keys: str) -> None:
        """Remove entries so the next read reloads them from the store."""
        for key in cache_keys:
            try:
                self.backend.remove(key)
                logger.debug(f"Cache invalidated: {key}")
            except CacheUnavailable as e:
                logger.warning(f"Cache invalidation failed for '{key}': {e}")

    def invalidate_prefix(self, prefix: str) -> None:
        """Remove every entry whose key starts with prefix."""
        try:
            removed = self.backend.remove_prefix(prefix)
            logger.debug(f"Cache invalidated {removed} entries under '{prefix}'")
        except CacheUnavailable as e:
            logger.warning(f"Cache prefix invalidation failed for '{prefix}': {e}")


_cache_layer = None
_cache_layer_lock = threading.Lock()


def build_cache_layer(config: Optional[Dict[str, Any]] = None) -> CacheLayer:
    """Build a CacheLayer from the INVENTORY_CACHE settings dict."""
    if config is None:
        config = getattr(settings, 'INVENTORY_CACHE', {})
    policies = {
        name: CachePolicy.from_settings(policy)
        for name, policy in config.get('POLICIES', {}).items()
    }
    return CacheLayer(build_cache_backend(config), policies)


def get_cache_layer() -> CacheLayer:
    """Return the process-wide cache layer, building it on first use."""
    global _cache_layer
    if _cache_layer is None:
        with _cache_layer_lock:
            if _cache_layer is None:
                _cache_layer = build_cache_layer()
    return _cache_layer


def reset_cache_layer() -> None:
    """Drop the process-wide cache layer so the next call rebuilds it."""
    global _cache_layer
    with _cache_layer_lock:
        _cache_layer = None
