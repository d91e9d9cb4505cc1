"""
Tests for inventory items, the cached inventory service and its API.

Test Cases:
1. Item model helpers and id assignment
2. Cold read populates the cache; a later read survives a cache outage
3. Writes invalidate the whole-collection and search caches
4. Failed writes (validation or store) leave the cache untouched
5. Read-after-write through the cache for the writer
6. REST endpoints and the scheduled sync task
"""
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from core.cache import CacheLayer, keys, reset_cache_layer
from core.cache_backends import LocMemCacheBackend
from core.exceptions import NotFound, StoreUnavailable, ValidationFailed
from core.tests import DownBackend, FakeClock, SerializingLocMemBackend
from inventory.models import InventoryItem
from inventory.services import InventoryService
from inventory.tasks import sync_inventory_cache
from orders.services import AssociationManager, OrderService


class InventoryItemModelTestCase(TestCase):

    def test_new_never_takes_an_id(self):
        item = InventoryItem.new('Widget', 10, 'A1', 2.99)
        self.assertIsNone(item.id)
        self.assertEqual(item.price, Decimal('2.99'))

        item.save()
        self.assertIsNotNone(item.id)

    def test_update_helpers(self):
        item = InventoryItem.new('Part', 0, 'C3', Decimal('1.00'))
        item.update_quantity(42)
        item.update_location('Z9')
        item.update_price('3.50')

        self.assertEqual(item.quantity, 42)
        self.assertEqual(item.location, 'Z9')
        self.assertEqual(item.price, Decimal('3.50'))

    def test_display_info(self):
        item = InventoryItem.new('Pallet Jack', 12, 'Warehouse A')
        self.assertEqual(item.display_info(), 'Item: Pallet Jack | Quantity: 12 | Location: Warehouse A')

    def test_str(self):
        item = InventoryItem.new('Gadget', 5, 'B2')
        item.save()
        text = str(item)
        self.assertIn(f'ItemId: {item.id}', text)
        self.assertIn('Name: Gadget', text)
        self.assertIn('Quantity: 5', text)
        self.assertIn('Location: B2', text)


class InventoryServiceTestCase(TestCase):
    """Cache-aside behaviour of item reads and writes."""

    def setUp(self):
        self.clock = FakeClock()
        self.backend = LocMemCacheBackend(clock=self.clock)
        self.cache = CacheLayer(self.backend)
        self.service = InventoryService(cache=self.cache)

    def test_cold_read_then_cache_outage(self):
        """
        Given: A freshly created Widget and a cold cache
        When: Reading it, then reading again with the cache down
        Then: Both reads return the item; the second falls back to the store
        """
        created = self.service.create_item('Widget', 10, 'A1', 2.99)
        self.cache.invalidate(keys.item(created['id']))

        item = self.service.get_item(created['id'])
        self.assertEqual(item, {
            'id': created['id'], 'name': 'Widget', 'quantity': 10,
            'location': 'A1', 'price': '2.99',
        })
        self.assertEqual(self.backend.get(keys.item(created['id'])), item)

        self.cache.backend = DownBackend()
        with self.assertLogs('core.cache', level='WARNING'):
            self.assertEqual(self.service.get_item(created['id']), item)

    def test_cache_hit_skips_store(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        self.service.get_item(created['id'])
        items = self.service.list_items()

        with self.assertNumQueries(0):
            self.assertEqual(self.service.get_item(created['id']), created)
            self.assertEqual(self.service.list_items(), items)

    def test_missing_item_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.service.get_item(999)
        self.assertIsNone(self.backend.get(keys.item(999)))

    def test_create_ignores_client_id(self):
        snapshot = self.service.create_item(name='Bolt', quantity=100, location='C3', price='0.10')
        self.assertNotEqual(snapshot['id'], None)
        self.assertTrue(InventoryItem.objects.filter(pk=snapshot['id'], name='Bolt').exists())

    def test_create_invalidates_whole_collection(self):
        """
        Given: The 'inventory_items' cache is populated
        When: A new item is created
        Then: The key is invalidated and the next read includes the new item
        """
        self.service.create_item('Widget', 10, 'A1', '2.99')
        self.assertEqual(len(self.service.list_items()), 1)
        self.assertIsNotNone(self.backend.get(keys.ITEMS))

        gadget = self.service.create_item('Gadget', 5, 'B2', '9.49')

        self.assertIsNone(self.backend.get(keys.ITEMS))
        items = self.service.list_items()
        self.assertEqual([i['name'] for i in items], ['Widget', 'Gadget'])
        self.assertIn(gadget, items)

    def test_create_prewarms_item_key(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        self.assertEqual(self.backend.get(keys.item(created['id'])), created)

    def test_validation_failure_leaves_cache_untouched(self):
        self.service.create_item('Widget', 10, 'A1', '2.99')
        cached = self.service.list_items()

        with self.assertRaises(ValidationFailed) as context:
            self.service.create_item('', 1, 'A1', '1.00')
        self.assertIn('name', context.exception.errors)

        with self.assertRaises(ValidationFailed):
            self.service.create_item('Bad', -1, 'A1', '1.00')

        with self.assertRaises(ValidationFailed):
            self.service.create_item('Bad', 1, 'A1', '-1.00')

        self.assertEqual(self.backend.get(keys.ITEMS), cached)
        self.assertEqual(InventoryItem.objects.count(), 1)

    def test_store_failure_leaves_cache_untouched(self):
        self.service.create_item('Widget', 10, 'A1', '2.99')
        cached = self.service.list_items()

        with patch.object(self.service.store, 'insert', side_effect=StoreUnavailable('down')):
            with self.assertRaises(StoreUnavailable):
                self.service.create_item('Gadget', 5, 'B2', '9.49')

        self.assertEqual(self.backend.get(keys.ITEMS), cached)

    def test_update_is_visible_to_the_writer(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        self.service.get_item(created['id'])
        self.service.list_items()

        updated = self.service.update_item(created['id'], quantity=7, location='Z9', price=Decimal('3.10'))

        self.assertEqual(updated['quantity'], 7)
        self.assertEqual(self.service.get_item(created['id']), updated)
        self.assertEqual(self.service.list_items(), [updated])
        self.assertEqual(InventoryItem.objects.get(pk=created['id']).location, 'Z9')

    def test_update_rejects_unknown_fields(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        with self.assertRaises(ValidationFailed):
            self.service.update_item(created['id'], id=99)

    def test_update_missing_item(self):
        with self.assertRaises(NotFound):
            self.service.update_item(404, quantity=1)

    def test_create_rejects_unparseable_price(self):
        self.service.list_items()
        cached = self.backend.get(keys.ITEMS)

        for price in ('abc', None):
            with self.assertRaises(ValidationFailed) as ctx:
                self.service.create_item('Widget', 1, 'A1', price=price)
            self.assertIn('price', ctx.exception.errors)

        self.assertEqual(InventoryItem.objects.count(), 0)
        self.assertEqual(self.backend.get(keys.ITEMS), cached)

    def test_update_rejects_unparseable_price(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        cached = self.service.get_item(created['id'])

        with self.assertRaises(ValidationFailed) as ctx:
            self.service.update_item(created['id'], price='abc')

        self.assertIn('price', ctx.exception.errors)
        self.assertEqual(InventoryItem.objects.get(pk=created['id']).price, Decimal('2.99'))
        self.assertEqual(self.backend.get(keys.item(created['id'])), cached)

    def test_update_invalidates_linked_order_items(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        orders = OrderService(cache=self.cache)
        order = orders.create_order('Acme')
        associations = AssociationManager(cache=self.cache)
        associations.add_item(order['id'], created['id'])
        associations.order_items(order['id'])

        self.service.update_item(created['id'], quantity=1)

        self.assertIsNone(self.backend.get(keys.order_items(order['id'])))
        self.assertEqual(associations.order_items(order['id'])[0]['quantity'], 1)

    def test_search_matches_name_and_location(self):
        self.service.create_item('Widget', 10, 'A1', '2.99')
        self.service.create_item('Gadget', 5, 'Aisle Widget', '9.49')
        self.service.create_item('Bolt', 100, 'C3', '0.10')

        results = self.service.search_items('WIDGET')

        self.assertEqual([i['name'] for i in results], ['Widget', 'Gadget'])
        self.assertEqual(self.backend.get(keys.item_search('widget')), results)

    def test_search_results_invalidated_by_writes(self):
        self.service.create_item('Widget', 10, 'A1', '2.99')
        self.assertEqual(len(self.service.search_items('widget')), 1)

        self.service.create_item('Widget XL', 1, 'A2', '5.00')

        self.assertIsNone(self.backend.get(keys.item_search('widget')))
        self.assertEqual(len(self.service.search_items('widget')), 2)

    def test_blank_search_term(self):
        with self.assertRaises(ValidationFailed):
            self.service.search_items('   ')

    def test_delete_item_invalidates_caches(self):
        created = self.service.create_item('Widget', 10, 'A1', '2.99')
        self.service.list_items()
        self.service.search_items('widget')

        self.service.delete_item(created['id'])

        self.assertIsNone(self.backend.get(keys.item(created['id'])))
        self.assertIsNone(self.backend.get(keys.ITEMS))
        self.assertIsNone(self.backend.get(keys.item_search('widget')))
        self.assertEqual(self.service.list_items(), [])
        with self.assertRaises(NotFound):
            self.service.get_item(created['id'])

    def test_serialized_backend_round_trip(self):
        cache = CacheLayer(SerializingLocMemBackend(clock=self.clock))
        service = InventoryService(cache=cache)
        created = service.create_item('Widget', 10, 'A1', Decimal('1234567.89'))

        with self.assertNumQueries(0):
            item = service.get_item(created['id'])

        self.assertEqual(item, created)
        self.assertEqual(Decimal(item['price']), Decimal('1234567.89'))

    def test_collection_entry_expires_without_writes(self):
        self.service.create_item('Widget', 10, 'A1', '2.99')
        self.service.list_items()

        # Another process writes straight to the database
        InventoryItem.new('Gadget', 5, 'B2', '9.49').save()
        self.assertEqual(len(self.service.list_items()), 1)

        self.clock.advance(self.cache.collection_policy.sliding + 1)
        self.assertEqual(len(self.service.list_items()), 2)


class InventoryAPITestCase(TestCase):
    """REST endpoints for inventory items."""

    def setUp(self):
        reset_cache_layer()
        self.client = APIClient()

    def tearDown(self):
        reset_cache_layer()

    def test_create_and_fetch(self):
        response = self.client.post(
            '/api/inventory/',
            {'id': 999, 'name': 'Widget', 'quantity': 10, 'location': 'A1', 'price': '2.99'},
            format='json'
        )
        self.assertEqual(response.status_code, 201)
        item_id = response.data['id']
        self.assertNotEqual(item_id, 999)
        self.assertFalse(InventoryItem.objects.filter(pk=999).exists())

        response = self.client.get(f'/api/inventory/{item_id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['price'], '2.99')

        response = self.client.get('/api/inventory/')
        self.assertEqual([i['name'] for i in response.data], ['Widget'])

    def test_create_invalid_item(self):
        response = self.client.post(
            '/api/inventory/',
            {'name': 'Widget', 'quantity': -5, 'price': '2.99'},
            format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(InventoryItem.objects.count(), 0)

    def test_missing_item_is_404(self):
        response = self.client.get('/api/inventory/12345/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'Not Found')

    def test_patch_and_delete(self):
        item = InventoryService().create_item('Widget', 10, 'A1', '2.99')

        response = self.client.patch(f"/api/inventory/{item['id']}/", {'quantity': 3}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['quantity'], 3)

        response = self.client.delete(f"/api/inventory/{item['id']}/")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/inventory/{item['id']}/").status_code, 404)

    def test_search(self):
        InventoryService().create_item('Widget', 10, 'A1', '2.99')

        response = self.client.get('/api/inventory/search/', {'searchTerm': 'wid'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

        self.assertEqual(self.client.get('/api/inventory/search/', {'searchTerm': 'zzz'}).status_code, 404)
        self.assertEqual(self.client.get('/api/inventory/search/', {'searchTerm': ' '}).status_code, 400)

    def test_store_outage_is_503(self):
        with patch('core.store.Store.load_all', side_effect=StoreUnavailable('down')):
            response = self.client.get('/api/inventory/')
        self.assertEqual(response.status_code, 503)


class SyncTaskTestCase(TestCase):

    def setUp(self):
        reset_cache_layer()

    def tearDown(self):
        reset_cache_layer()

    def test_sync_task_reports_counts_and_republishes(self):
        InventoryItem.new('Widget', 10, 'A1', '2.99').save()
        InventoryItem.new('Gadget', 5, 'B2', '9.49').save()

        result = sync_inventory_cache()

        self.assertEqual(result, {'status': 'success', 'items': 2, 'orders': 0})
        with self.assertNumQueries(0):
            self.assertEqual(len(InventoryService().list_items()), 2)

    def test_sync_task_skips_when_store_down(self):
        with patch('core.store.Store.count', side_effect=StoreUnavailable('down')):
            self.assertEqual(sync_inventory_cache(), {'status': 'skipped'})
