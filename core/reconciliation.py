"""
Background reconciliation between the store and the cache.

Each tick reads a lightweight summary from the store (item and order counts)
and republishes the whole-collection cache entries, which bounds how stale
those entries can get even when no request invalidates them. The wait
between ticks is an Event wait, so stop() interrupts it immediately.
"""
import logging
import threading
from typing import Callable, Dict, Optional

from django.db import close_old_connections

from .cache import CacheLayer
from .exceptions import StoreUnavailable
from .store import ITEM, ORDER, Store

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10 * 60


class ReconciliationCancelled(Exception):
    """Raised inside a tick when shutdown was requested."""
    pass


class ReconciliationLoop:
    """
    Periodic store-to-cache resynchronisation.

    Args:
        store: Store to read counts and collections from
        cache: CacheLayer to republish collections into
        interval: Seconds between ticks
        collection_loaders: Cache key -> loader for collections to republish
        refresh_collections: Set False to only emit counts
    """

    def __init__(self, store: Store, cache: CacheLayer, interval: float = DEFAULT_INTERVAL,
                 collection_loaders: Optional[Dict[str, Callable]] = None,
                 refresh_collections: bool = True,
                 stop_event: Optional[threading.Event] = None):
        self.store = store
        self.cache = cache
        self.interval = interval
        self.collection_loaders = collection_loaders or {}
        self.refresh_collections = refresh_collections
        self.stop_event = stop_event or threading.Event()
        self.ticks = 0
        self.failed_ticks = 0
        self.last_counts: Optional[Dict[str, int]] = None
        self._thread: Optional[threading.Thread] = None

    def _check_cancelled(self) -> None:
        if self.stop_event.is_set():
            raise ReconciliationCancelled()

    def tick(self) -> Optional[Dict[str, int]]:
        """
        Run one reconciliation pass.

        Returns the counts read from the store, or None if the tick was
        skipped because the store failed or shutdown was requested.
        """
        try:
            self._check_cancelled()
            item_count = self.store.count(ITEM)
            self._check_cancelled()
            order_count = self.store.count(ORDER)

            if self.refresh_collections:
                for key, loader in self.collection_loaders.items():
                    self._check_cancelled()
                    self.cache.put(key, loader(), self.cache.collection_policy)
        except ReconciliationCancelled:
            logger.info("Reconciliation tick cancelled by shutdown")
            return None
        except StoreUnavailable as e:
            self.failed_ticks += 1
            logger.warning(f"Reconciliation tick skipped, store unavailable: {e}")
            return None

        self.ticks += 1
        self.last_counts = {'items': item_count, 'orders': order_count}
        logger.info(f"Synced {item_count} inventory items and {order_count} orders")
        return self.last_counts

    def run(self) -> None:
        """Tick until stop() is called. Blocks the calling thread."""
        logger.info(f"Reconciliation loop started (interval {self.interval}s)")
        try:
            while not self.stop_event.is_set():
                close_old_connections()
                try:
                    self.tick()
                except Exception:
                    # A tick must never end the loop
                    self.failed_ticks += 1
                    logger.exception("Unexpected error during reconciliation tick")
                if self.stop_event.wait(self.interval):
                    break
        finally:
            close_old_connections()
            logger.info("Reconciliation loop stopped")

    def start(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self.stop_event.clear()
        self._thread = threading.Thread(target=self.run, name='cache-reconciliation', daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
