"""
Tests for orders and the order/item association manager.

Test Cases:
1. Adding an item twice yields one link; removing twice is a no-op success
2. Final link state follows the last effective add/remove
3. Cascade deletes remove links but never the other side
4. Link changes invalidate the order's cached entries
5. A lost duplicate-insert race is normalized to a no-op
6. REST endpoints for orders and links
"""
import random
from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.cache import CacheLayer, keys, reset_cache_layer
from core.cache_backends import LocMemCacheBackend
from core.exceptions import NotFound, StoreUnavailable
from inventory.models import InventoryItem
from inventory.services import InventoryService
from orders.models import Order, OrderItemLink, UNKNOWN_CUSTOMER
from orders.services import AssociationManager, OrderService


class OrderModelTestCase(TestCase):
    """Test cases for Order model defaults and helpers."""

    def test_defaults(self):
        before = timezone.now()
        order = Order.new()
        order.save()

        self.assertEqual(order.customer_name, UNKNOWN_CUSTOMER)
        self.assertGreaterEqual(order.date_placed, before)
        self.assertLessEqual(order.date_placed, timezone.now())
        self.assertEqual(order.item_count, 0)

    def test_blank_customer_becomes_unknown(self):
        self.assertEqual(Order.new('   ').customer_name, UNKNOWN_CUSTOMER)
        self.assertEqual(Order.new('Test Customer').customer_name, 'Test Customer')

    def test_summary(self):
        order = Order.new('Test Customer')
        order.save()
        item = InventoryItem.new('Widget', 10, 'A1', '3.99')
        item.save()
        OrderItemLink.objects.create(order=order, item=item)

        self.assertEqual(
            order.summary(),
            f"Order #{order.id} for Test Customer | Items: 1 | "
            f"Placed: {order.date_placed.date().isoformat()}"
        )


class AssociationManagerTestCase(TestCase):
    """Test cases for link management and cache coordination."""

    def setUp(self):
        self.backend = LocMemCacheBackend()
        self.cache = CacheLayer(self.backend)
        self.associations = AssociationManager(cache=self.cache)
        self.orders = OrderService(cache=self.cache, associations=self.associations)
        self.inventory = InventoryService(cache=self.cache, associations=self.associations)

        self.order = self.orders.create_order('O1')
        self.other_order = self.orders.create_order('O2')
        self.item = self.inventory.create_item('Widget', 10, 'A1', '2.99')
        self.other_item = self.inventory.create_item('Gadget', 5, 'B2', '9.49')

    def test_add_twice_creates_one_link(self):
        """
        Given: Order O1 and item I1
        When: add_item(O1, I1) is called twice
        Then: Exactly one link exists
        """
        self.assertTrue(self.associations.add_item(self.order['id'], self.item['id']))
        self.assertFalse(self.associations.add_item(self.order['id'], self.item['id']))

        self.assertEqual(self.associations.link_count(self.order['id']), 1)
        self.assertEqual(OrderItemLink.objects.filter(order_id=self.order['id']).count(), 1)

    def test_remove_twice_succeeds(self):
        self.associations.add_item(self.order['id'], self.item['id'])

        self.assertTrue(self.associations.remove_item(self.order['id'], self.item['id']))
        self.assertFalse(self.associations.remove_item(self.order['id'], self.item['id']))

        self.assertEqual(self.associations.link_count(self.order['id']), 0)

    def test_remove_non_member_is_not_an_error(self):
        self.assertFalse(self.associations.remove_item(self.order['id'], self.item['id']))
        self.assertFalse(self.associations.remove_item(self.order['id'], 987654))

    def test_add_requires_both_sides(self):
        with self.assertRaises(NotFound):
            self.associations.add_item(987654, self.item['id'])
        with self.assertRaises(NotFound):
            self.associations.add_item(self.order['id'], 987654)
        self.assertEqual(OrderItemLink.objects.count(), 0)

    def test_remove_requires_order(self):
        with self.assertRaises(NotFound):
            self.associations.remove_item(987654, self.item['id'])

    def test_final_state_follows_last_effective_operation(self):
        rng = random.Random(20240101)
        order_id, item_id = self.order['id'], self.item['id']

        for _ in range(50):
            present = self.associations.store.link_exists(order_id, item_id)
            if rng.random() < 0.5:
                changed = self.associations.add_item(order_id, item_id)
                self.assertEqual(changed, not present)
                self.assertTrue(self.associations.store.link_exists(order_id, item_id))
            else:
                changed = self.associations.remove_item(order_id, item_id)
                self.assertEqual(changed, present)
                self.assertFalse(self.associations.store.link_exists(order_id, item_id))
            self.assertLessEqual(self.associations.link_count(order_id), 1)

    def test_lost_insert_race_is_a_noop(self):
        self.associations.add_item(self.order['id'], self.item['id'])

        # Simulate a concurrent writer inserting between the check and the insert
        with patch.object(self.associations.store, 'link_exists', return_value=False):
            self.assertFalse(self.associations.add_item(self.order['id'], self.item['id']))

        self.assertEqual(self.associations.link_count(self.order['id']), 1)

    def test_add_invalidates_order_entries(self):
        self.assertEqual(self.associations.order_items(self.order['id']), [])
        self.orders.get_order(self.order['id'])
        self.orders.list_orders()

        self.associations.add_item(self.order['id'], self.item['id'])

        self.assertIsNone(self.backend.get(keys.order_items(self.order['id'])))
        self.assertIsNone(self.backend.get(keys.order(self.order['id'])))
        self.assertIsNone(self.backend.get(keys.ORDERS))
        self.assertEqual(self.associations.order_items(self.order['id']), [self.item])
        self.assertEqual(self.orders.get_order(self.order['id'])['item_ids'], [self.item['id']])

    def test_remove_invalidates_order_entries(self):
        self.associations.add_item(self.order['id'], self.item['id'])
        self.assertEqual(len(self.associations.order_items(self.order['id'])), 1)

        self.associations.remove_item(self.order['id'], self.item['id'])

        self.assertEqual(self.associations.order_items(self.order['id']), [])
        self.assertEqual(self.orders.get_order(self.order['id'])['item_count'], 0)

    def test_noop_add_keeps_cache(self):
        self.associations.add_item(self.order['id'], self.item['id'])
        cached = self.associations.order_items(self.order['id'])

        self.associations.add_item(self.order['id'], self.item['id'])

        self.assertEqual(self.backend.get(keys.order_items(self.order['id'])), cached)

    def test_store_failure_leaves_cache_untouched(self):
        cached = self.associations.order_items(self.order['id'])

        with patch.object(self.associations.store, 'insert_link', side_effect=StoreUnavailable('down')):
            with self.assertRaises(StoreUnavailable):
                self.associations.add_item(self.order['id'], self.item['id'])

        self.assertEqual(self.backend.get(keys.order_items(self.order['id'])), cached)

    def test_order_items_for_missing_order(self):
        with self.assertRaises(NotFound):
            self.associations.order_items(987654)

    def test_delete_item_cascades_to_links_only(self):
        """
        Given: Item I1 linked to O1 and O2
        When: I1 is deleted
        Then: Both links are gone, both orders remain, other links survive
        """
        for order in (self.order, self.other_order):
            self.associations.add_item(order['id'], self.item['id'])
        self.associations.add_item(self.order['id'], self.other_item['id'])
        self.associations.order_items(self.order['id'])
        self.associations.order_items(self.other_order['id'])
        self.orders.list_orders()

        affected = self.associations.delete_item_cascade(self.item['id'])

        self.assertEqual(sorted(affected), sorted([self.order['id'], self.other_order['id']]))
        self.assertFalse(InventoryItem.objects.filter(pk=self.item['id']).exists())
        self.assertEqual(Order.objects.count(), 2)
        for order in (self.order, self.other_order):
            self.assertFalse(self.associations.store.link_exists(order['id'], self.item['id']))
        self.assertTrue(self.associations.store.link_exists(self.order['id'], self.other_item['id']))

        self.assertIsNone(self.backend.get(keys.ORDERS))
        self.assertEqual(self.associations.order_items(self.order['id']), [self.other_item])
        self.assertEqual(self.associations.order_items(self.other_order['id']), [])

    def test_delete_item_invalidates_orders_linked_just_before_the_delete(self):
        """
        Given: I1 linked to O1, and O2 cached while it has no items
        When: A link O2-I1 commits after the cascade starts but before the row is deleted
        Then: O2 is reported and its cached entries are invalidated
        """
        self.associations.add_item(self.order['id'], self.item['id'])
        self.associations.order_items(self.other_order['id'])
        self.orders.get_order(self.other_order['id'])

        store = self.associations.store
        link_model = store._link_model()
        late_links = [(self.other_order['id'], self.item['id'])]

        def link_model_after_late_add():
            while late_links:
                order_id, item_id = late_links.pop()
                link_model.objects.create(order_id=order_id, item_id=item_id)
            return link_model

        with patch.object(store, '_link_model', side_effect=link_model_after_late_add):
            affected = self.associations.delete_item_cascade(self.item['id'])

        self.assertEqual(affected, [self.order['id'], self.other_order['id']])
        self.assertFalse(OrderItemLink.objects.filter(item_id=self.item['id']).exists())
        self.assertIsNone(self.backend.get(keys.order(self.other_order['id'])))
        self.assertIsNone(self.backend.get(keys.order_items(self.other_order['id'])))

    def test_delete_order_cascades_to_links_only(self):
        self.associations.add_item(self.order['id'], self.item['id'])
        self.associations.add_item(self.order['id'], self.other_item['id'])
        self.associations.add_item(self.other_order['id'], self.item['id'])

        removed = self.orders.delete_order(self.order['id'])

        self.assertIsNone(removed)
        self.assertFalse(Order.objects.filter(pk=self.order['id']).exists())
        self.assertEqual(InventoryItem.objects.count(), 2)
        self.assertFalse(self.associations.store.link_exists(self.order['id'], self.item['id']))
        self.assertFalse(self.associations.store.link_exists(self.order['id'], self.other_item['id']))
        self.assertTrue(self.associations.store.link_exists(self.other_order['id'], self.item['id']))

        with self.assertRaises(NotFound):
            self.orders.get_order(self.order['id'])
        with self.assertRaises(NotFound):
            self.associations.order_items(self.order['id'])

    def test_delete_missing_entities(self):
        with self.assertRaises(NotFound):
            self.associations.delete_item_cascade(987654)
        with self.assertRaises(NotFound):
            self.associations.delete_order_cascade(987654)

    def test_delete_link_leaves_both_sides(self):
        self.associations.add_item(self.order['id'], self.item['id'])
        self.associations.remove_item(self.order['id'], self.item['id'])

        self.assertTrue(Order.objects.filter(pk=self.order['id']).exists())
        self.assertTrue(InventoryItem.objects.filter(pk=self.item['id']).exists())


class OrderServiceTestCase(TestCase):

    def setUp(self):
        self.backend = LocMemCacheBackend()
        self.cache = CacheLayer(self.backend)
        self.orders = OrderService(cache=self.cache)

    def test_create_defaults_and_invalidates_collection(self):
        self.assertEqual(self.orders.list_orders(), [])

        order = self.orders.create_order()

        self.assertEqual(order['customer_name'], UNKNOWN_CUSTOMER)
        self.assertEqual(order['item_ids'], [])
        self.assertIsNone(self.backend.get(keys.ORDERS))
        self.assertEqual(self.orders.list_orders(), [order])

    def test_update_is_visible_to_the_writer(self):
        order = self.orders.create_order('Acme')
        self.orders.list_orders()
        placed = timezone.now() - timedelta(days=3)

        updated = self.orders.update_order(order['id'], customer_name='Globex', date_placed=placed)

        self.assertEqual(updated['customer_name'], 'Globex')
        self.assertEqual(self.orders.get_order(order['id']), updated)
        self.assertEqual(self.orders.list_orders(), [updated])
        self.assertEqual(Order.objects.get(pk=order['id']).date_placed, placed)

    def test_update_missing_order(self):
        with self.assertRaises(NotFound):
            self.orders.update_order(987654, customer_name='Nobody')

    def test_order_summary(self):
        order = self.orders.create_order('Acme')
        self.assertIn(f"Order #{order['id']} for Acme | Items: 0", self.orders.order_summary(order['id']))


class OrderAPITestCase(TestCase):
    """REST endpoints for orders and order/item links."""

    def setUp(self):
        reset_cache_layer()
        self.client = APIClient()
        self.item = InventoryService().create_item('Widget', 10, 'A1', '2.99')

    def tearDown(self):
        reset_cache_layer()

    def test_order_lifecycle(self):
        response = self.client.post('/api/orders/', {'customer_name': 'Acme'}, format='json')
        self.assertEqual(response.status_code, 201)
        order_id = response.data['id']

        url = f"/api/orders/{order_id}/items/{self.item['id']}/"
        self.assertEqual(self.client.put(url).status_code, 201)
        self.assertEqual(self.client.put(url).status_code, 200)

        response = self.client.get(f'/api/orders/{order_id}/items/')
        self.assertEqual([i['name'] for i in response.data], ['Widget'])

        response = self.client.get(f'/api/orders/{order_id}/')
        self.assertEqual(response.data['item_ids'], [self.item['id']])

        self.assertEqual(self.client.delete(url).status_code, 204)
        self.assertEqual(self.client.delete(url).status_code, 204)
        self.assertEqual(self.client.get(f'/api/orders/{order_id}/items/').data, [])

        self.assertEqual(self.client.delete(f'/api/orders/{order_id}/').status_code, 204)
        self.assertEqual(self.client.get(f'/api/orders/{order_id}/').status_code, 404)
        self.assertTrue(InventoryItem.objects.filter(pk=self.item['id']).exists())

    def test_create_without_customer(self):
        response = self.client.post('/api/orders/', {}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['customer_name'], UNKNOWN_CUSTOMER)

    def test_link_to_missing_entities(self):
        order = OrderService().create_order('Acme')
        self.assertEqual(self.client.put(f"/api/orders/{order['id']}/items/987654/").status_code, 404)
        self.assertEqual(self.client.put(f"/api/orders/987654/items/{self.item['id']}/").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/orders/987654/items/{self.item['id']}/").status_code, 404)

    def test_patch_order(self):
        order = OrderService().create_order('Acme')
        response = self.client.patch(f"/api/orders/{order['id']}/", {'customer_name': 'Globex'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get('/api/orders/').data[0]['customer_name'], 'Globex')
