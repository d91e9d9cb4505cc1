"""
Tests for the cache layer, cache backends and reconciliation loop.

Test Cases:
1. Absolute TTL is a hard upper bound; sliding windows extend on refresh
2. Cache hits never call the loader; misses call it exactly once
3. Backend failures degrade to the loader without raising
4. Redis backend hash layout and expiry arithmetic
5. Reconciliation ticks, failure skipping and prompt shutdown
"""
import json
import threading
import time
from decimal import Decimal
from unittest.mock import MagicMock

import redis
from django.core.serializers.json import DjangoJSONEncoder
from django.test import SimpleTestCase, TestCase

from core.cache import CacheLayer, CachePolicy, build_cache_layer, keys
from core.cache_backends import (
    CacheBackend,
    LocMemCacheBackend,
    NullCacheBackend,
    RedisCacheBackend,
    build_cache_backend,
)
from core.exceptions import CacheUnavailable, NotFound, StoreUnavailable
from core.reconciliation import ReconciliationLoop
from core.store import ITEM, ORDER, Store


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class DownBackend(CacheBackend):
    """Backend simulating an unreachable cache server."""

    def get(self, key):
        raise CacheUnavailable("connection refused")

    def set(self, key, value, ttl=None, sliding=None):
        raise CacheUnavailable("connection refused")

    def remove(self, key):
        raise CacheUnavailable("connection refused")

    def refresh_expiry(self, key):
        raise CacheUnavailable("connection refused")

    def remove_prefix(self, prefix):
        raise CacheUnavailable("connection refused")


class SerializingLocMemBackend(LocMemCacheBackend):
    """In-process backend that stores bytes, like a distributed cache."""
    serializes = True


class CacheKeyTestCase(SimpleTestCase):

    def test_key_naming(self):
        self.assertEqual(keys.ITEMS, 'inventory_items')
        self.assertEqual(keys.item(42), 'inventory_item_42')
        self.assertEqual(keys.item_search('widget'), 'inventory_items_search_widget')
        self.assertEqual(keys.ORDERS, 'orders')
        self.assertEqual(keys.order(7), 'order_7')
        self.assertEqual(keys.order_items(7), 'order_7_items')

    def test_search_term_is_normalized(self):
        self.assertEqual(keys.item_search('  WiDgEt '), 'inventory_items_search_widget')


class LocMemBackendTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.backend = LocMemCacheBackend(clock=self.clock)

    def test_absolute_ttl_is_hard_upper_bound(self):
        """
        Given: ttl=100s, sliding=30s
        When: The entry is read and refreshed every 20s
        Then: It survives until 100s and is gone at 100s regardless
        """
        self.backend.set('k', 'v', ttl=100, sliding=30)
        for _ in range(4):
            self.clock.advance(20)
            self.assertEqual(self.backend.get('k'), 'v')
            self.backend.refresh_expiry('k')

        self.clock.advance(19)  # t=99
        self.assertEqual(self.backend.get('k'), 'v')
        self.backend.refresh_expiry('k')

        self.clock.advance(1)  # t=100
        self.assertIsNone(self.backend.get('k'))

    def test_sliding_window_extends_on_refresh(self):
        self.backend.set('k', 'v', sliding=30)
        self.clock.advance(20)
        self.backend.refresh_expiry('k')
        self.clock.advance(20)
        # 40s after creation, only 20s since the last refresh
        self.assertEqual(self.backend.get('k'), 'v')

        self.clock.advance(11)
        self.assertIsNone(self.backend.get('k'))

    def test_sliding_window_without_refresh_expires(self):
        self.backend.set('k', 'v', sliding=30)
        self.clock.advance(20)
        self.assertEqual(self.backend.get('k'), 'v')
        self.clock.advance(10)
        self.assertIsNone(self.backend.get('k'))

    def test_no_expiry_persists(self):
        self.backend.set('k', 'v')
        self.clock.advance(10 ** 6)
        self.assertEqual(self.backend.get('k'), 'v')

    def test_returns_snapshots(self):
        self.backend.set('k', {'name': 'Widget'})
        value = self.backend.get('k')
        value['name'] = 'Changed'
        self.assertEqual(self.backend.get('k'), {'name': 'Widget'})

    def test_remove_and_remove_prefix(self):
        self.backend.set('inventory_items_search_a', [1])
        self.backend.set('inventory_items_search_b', [2])
        self.backend.set('inventory_items', [1, 2])

        self.assertEqual(self.backend.remove_prefix('inventory_items_search_'), 2)
        self.assertEqual(len(self.backend), 1)

        self.backend.remove('inventory_items')
        self.assertIsNone(self.backend.get('inventory_items'))
        self.backend.remove('missing')


class CacheLayerTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.backend = LocMemCacheBackend(clock=self.clock)
        self.cache = CacheLayer(self.backend)

    def test_miss_calls_loader_once_and_populates(self):
        loader = MagicMock(return_value={'id': 1, 'name': 'Widget'})

        value = self.cache.get_or_load('inventory_item_1', loader)

        self.assertEqual(value, {'id': 1, 'name': 'Widget'})
        loader.assert_called_once_with()
        self.assertEqual(self.backend.get('inventory_item_1'), {'id': 1, 'name': 'Widget'})

    def test_hit_does_not_call_loader(self):
        self.cache.put('inventory_item_1', {'id': 1})
        loader = MagicMock()

        self.assertEqual(self.cache.get_or_load('inventory_item_1', loader), {'id': 1})
        loader.assert_not_called()

    def test_hit_refreshes_sliding_expiry(self):
        policy = CachePolicy(sliding=30)
        self.cache.put('inventory_items', [1], policy)
        loader = MagicMock(return_value=[2])

        for _ in range(5):
            self.clock.advance(20)
            self.assertEqual(self.cache.get_or_load('inventory_items', loader, policy), [1])
        loader.assert_not_called()

        self.clock.advance(31)
        self.assertEqual(self.cache.get_or_load('inventory_items', loader, policy), [2])

    def test_invalidate_forces_reload(self):
        self.cache.put('inventory_items', [1])
        self.cache.invalidate('inventory_items')

        loader = MagicMock(return_value=[1, 2])
        self.assertEqual(self.cache.get_or_load('inventory_items', loader), [1, 2])
        loader.assert_called_once_with()

    def test_invalidate_prefix(self):
        self.cache.put(keys.item_search('a'), [])
        self.cache.put(keys.item_search('b'), [])
        self.cache.put(keys.ITEMS, [])

        self.cache.invalidate_prefix(keys.ITEM_SEARCH_PREFIX)

        self.assertIsNone(self.backend.get(keys.item_search('a')))
        self.assertIsNone(self.backend.get(keys.item_search('b')))
        self.assertEqual(self.backend.get(keys.ITEMS), [])

    def test_loader_error_propagates_and_is_not_cached(self):
        loader = MagicMock(side_effect=NotFound(ITEM, 9))

        with self.assertRaises(NotFound):
            self.cache.get_or_load('inventory_item_9', loader)
        self.assertIsNone(self.backend.get('inventory_item_9'))

    def test_default_policy_is_entity_policy(self):
        self.cache.put('order_1', {'id': 1})
        self.clock.advance(self.cache.entity_policy.sliding - 1)
        self.assertEqual(self.backend.get('order_1'), {'id': 1})
        self.clock.advance(2)
        self.assertIsNone(self.backend.get('order_1'))

    def test_backend_down_falls_back_to_loader(self):
        cache = CacheLayer(DownBackend())
        loader = MagicMock(return_value={'id': 1})

        with self.assertLogs('core.cache', level='WARNING') as logs:
            self.assertEqual(cache.get_or_load('inventory_item_1', loader), {'id': 1})
            self.assertEqual(cache.get_or_load('inventory_item_1', loader), {'id': 1})
            cache.put('inventory_item_1', {'id': 1})
            cache.invalidate('inventory_item_1')
            cache.invalidate_prefix(keys.ITEM_SEARCH_PREFIX)

        self.assertEqual(loader.call_count, 2)
        self.assertTrue(any('falling back to store' in line for line in logs.output))

    def test_undecodable_entry_is_reloaded(self):
        backend = SerializingLocMemBackend(clock=self.clock)
        cache = CacheLayer(backend)
        backend.set('inventory_items', b'not json')

        loader = MagicMock(return_value=[])
        self.assertEqual(cache.get_or_load('inventory_items', loader), [])
        loader.assert_called_once_with()

    def test_serialized_snapshot_keeps_decimal_precision(self):
        backend = SerializingLocMemBackend(clock=self.clock)
        cache = CacheLayer(backend)
        snapshot = {'id': 1, 'name': 'Widget', 'quantity': 10, 'location': 'A1', 'price': '2.99'}

        cache.put('inventory_item_1', snapshot)
        raw = backend.get('inventory_item_1')

        self.assertIsInstance(raw, bytes)
        self.assertEqual(cache.get_or_load('inventory_item_1', MagicMock()), snapshot)
        self.assertEqual(Decimal(json.loads(raw)['price']), Decimal('2.99'))

    def test_decimal_values_encode_as_exact_strings(self):
        backend = SerializingLocMemBackend(clock=self.clock)
        cache = CacheLayer(backend)
        cache.put('k', {'price': Decimal('1234567.89')})
        self.assertEqual(cache.get_or_load('k', MagicMock()), {'price': '1234567.89'})

    def test_build_cache_layer_reads_policies(self):
        layer = build_cache_layer({
            'BACKEND': 'locmem',
            'POLICIES': {'collection': {'ABSOLUTE_TTL': None, 'SLIDING': 15}},
        })
        self.assertIsInstance(layer.backend, LocMemCacheBackend)
        self.assertEqual(layer.collection_policy, CachePolicy(sliding=15))
        self.assertEqual(layer.entity_policy, CachePolicy(absolute_ttl=1800, sliding=600))


class RedisBackendTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock(1_000.0)
        self.client = MagicMock()
        self.pipe = self.client.pipeline.return_value.__enter__.return_value
        self.backend = RedisCacheBackend(client=self.client, key_prefix='LogiTrack_', clock=self.clock)

    def test_set_writes_hash_and_effective_expiry(self):
        self.backend.set('inventory_item_1', b'{}', ttl=1800, sliding=600)

        self.pipe.delete.assert_called_once_with('LogiTrack_inventory_item_1')
        self.pipe.hset.assert_called_once_with(
            'LogiTrack_inventory_item_1',
            mapping={'data': b'{}', 'absexp': 1_000_000 + 1_800_000, 'sldexp': 600_000},
        )
        self.pipe.pexpire.assert_called_once_with('LogiTrack_inventory_item_1', 600_000)
        self.pipe.execute.assert_called_once_with()

    def test_set_without_expiry_does_not_expire(self):
        self.backend.set('k', b'1')
        self.pipe.pexpire.assert_not_called()
        _, kwargs = self.pipe.hset.call_args
        self.assertEqual(kwargs['mapping']['absexp'], -1)
        self.assertEqual(kwargs['mapping']['sldexp'], -1)

    def test_get_reads_data_field(self):
        self.client.hget.return_value = b'[1, 2]'
        self.assertEqual(self.backend.get('inventory_items'), b'[1, 2]')
        self.client.hget.assert_called_once_with('LogiTrack_inventory_items', 'data')

    def test_refresh_is_capped_by_absolute_deadline(self):
        # Absolute deadline 100s away, sliding window 600s
        self.client.hmget.return_value = [b'1100000', b'600000']
        self.backend.refresh_expiry('inventory_item_1')
        self.client.pexpire.assert_called_once_with('LogiTrack_inventory_item_1', 100_000)

    def test_refresh_restarts_sliding_window(self):
        self.client.hmget.return_value = [b'-1', b'60000']
        self.backend.refresh_expiry('inventory_items')
        self.client.pexpire.assert_called_once_with('LogiTrack_inventory_items', 60_000)

    def test_refresh_past_deadline_deletes(self):
        self.client.hmget.return_value = [b'999000', b'60000']
        self.backend.refresh_expiry('k')
        self.client.delete.assert_called_once_with('LogiTrack_k')

    def test_refresh_without_sliding_is_noop(self):
        self.client.hmget.return_value = [b'1100000', b'-1']
        self.backend.refresh_expiry('k')
        self.client.pexpire.assert_not_called()

    def test_remove_prefix_scans_and_deletes(self):
        self.client.scan_iter.return_value = iter([b'LogiTrack_inventory_items_search_a'])
        self.client.delete.return_value = 1

        self.assertEqual(self.backend.remove_prefix('inventory_items_search_'), 1)
        self.client.scan_iter.assert_called_once_with(
            match='LogiTrack_inventory_items_search_*', count=500
        )

    def test_redis_errors_become_cache_unavailable(self):
        self.client.hget.side_effect = redis.ConnectionError("refused")
        self.client.delete.side_effect = redis.TimeoutError("timeout")
        self.pipe.execute.side_effect = redis.ConnectionError("refused")

        with self.assertRaises(CacheUnavailable):
            self.backend.get('k')
        with self.assertRaises(CacheUnavailable):
            self.backend.remove('k')
        with self.assertRaises(CacheUnavailable):
            self.backend.set('k', b'1', ttl=10)

    def test_cache_layer_over_redis_round_trip(self):
        cache = CacheLayer(self.backend)
        payload = [{'id': 1, 'price': '2.99'}]
        self.client.hget.return_value = json.dumps(payload, cls=DjangoJSONEncoder).encode()
        self.client.hmget.return_value = [b'-1', b'60000']

        loader = MagicMock()
        self.assertEqual(cache.get_or_load('inventory_items', loader), payload)
        loader.assert_not_called()

    def test_cache_layer_survives_redis_outage(self):
        cache = CacheLayer(self.backend)
        self.client.hget.side_effect = redis.ConnectionError("refused")

        with self.assertLogs('core.cache', level='WARNING'):
            self.assertEqual(cache.get_or_load('inventory_items', lambda: []), [])


class BuildBackendTestCase(SimpleTestCase):

    def test_backend_selection(self):
        self.assertIsInstance(build_cache_backend({'BACKEND': 'locmem'}), LocMemCacheBackend)
        self.assertIsInstance(build_cache_backend({'BACKEND': 'none'}), NullCacheBackend)
        backend = build_cache_backend({
            'BACKEND': 'redis',
            'LOCATION': 'redis://cache.internal:6379/1',
            'KEY_PREFIX': 'LogiTrack_',
        })
        self.assertIsInstance(backend, RedisCacheBackend)
        self.assertEqual(backend.key_prefix, 'LogiTrack_')

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            build_cache_backend({'BACKEND': 'memcached'})

    def test_null_backend_always_misses(self):
        cache = CacheLayer(NullCacheBackend())
        loader = MagicMock(return_value=[1])
        cache.get_or_load('inventory_items', loader)
        cache.get_or_load('inventory_items', loader)
        self.assertEqual(loader.call_count, 2)


class ReconciliationLoopTestCase(SimpleTestCase):

    def setUp(self):
        self.store = MagicMock()
        self.store.count.side_effect = lambda kind: {ITEM: 3, ORDER: 2}[kind]
        self.backend = LocMemCacheBackend()
        self.cache = CacheLayer(self.backend)
        self.items_loader = MagicMock(return_value=[{'id': 1}, {'id': 2}, {'id': 3}])

    def make_loop(self, **kwargs):
        kwargs.setdefault('collection_loaders', {keys.ITEMS: self.items_loader})
        return ReconciliationLoop(self.store, self.cache, **kwargs)

    def test_tick_reports_counts_and_republishes(self):
        loop = self.make_loop()

        with self.assertLogs('core.reconciliation', level='INFO') as logs:
            counts = loop.tick()

        self.assertEqual(counts, {'items': 3, 'orders': 2})
        self.assertEqual(loop.last_counts, counts)
        self.assertEqual(self.backend.get(keys.ITEMS), [{'id': 1}, {'id': 2}, {'id': 3}])
        self.assertTrue(any('Synced 3 inventory items' in line for line in logs.output))

    def test_tick_without_refresh_only_counts(self):
        loop = self.make_loop(refresh_collections=False)
        loop.tick()
        self.items_loader.assert_not_called()
        self.assertIsNone(self.backend.get(keys.ITEMS))

    def test_store_failure_skips_tick(self):
        self.store.count.side_effect = StoreUnavailable("database is down")
        loop = self.make_loop()

        with self.assertLogs('core.reconciliation', level='WARNING'):
            self.assertIsNone(loop.tick())
        self.assertEqual(loop.failed_ticks, 1)
        self.assertEqual(loop.ticks, 0)

    def test_cancelled_before_store_call(self):
        loop = self.make_loop()
        loop.stop_event.set()

        self.assertIsNone(loop.tick())
        self.store.count.assert_not_called()

    def test_loop_survives_failed_tick(self):
        counts = iter([StoreUnavailable("down"), 3, 2])

        def count(kind):
            value = next(counts, 1)
            if isinstance(value, Exception):
                raise value
            return value

        self.store.count.side_effect = count
        loop = self.make_loop(interval=0.01)
        loop.start()
        try:
            deadline = time.monotonic() + 5
            while loop.ticks < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            loop.stop(timeout=5)

        self.assertGreaterEqual(loop.failed_ticks, 1)
        self.assertGreaterEqual(loop.ticks, 1)

    def test_stop_interrupts_wait_promptly(self):
        loop = self.make_loop(interval=3600)
        ticked = threading.Event()
        self.store.count.side_effect = lambda kind: ticked.set() or 1

        loop.start()
        self.assertTrue(ticked.wait(5))

        started = time.monotonic()
        loop.stop(timeout=5)

        self.assertLess(time.monotonic() - started, 2)
        self.assertFalse(loop.running)


class ReconciliationStoreTestCase(TestCase):
    """Reconciliation against the real store."""

    def test_tick_counts_store_rows(self):
        from inventory.models import InventoryItem
        from orders.models import Order

        InventoryItem.new('Widget', 10, 'A1', Decimal('2.99')).save()
        InventoryItem.new('Gadget', 5, 'B2', Decimal('9.49')).save()
        Order.new('Acme').save()

        loop = ReconciliationLoop(Store(), CacheLayer(LocMemCacheBackend()))
        self.assertEqual(loop.tick(), {'items': 2, 'orders': 1})
