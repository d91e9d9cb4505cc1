"""
Management command to seed the database with sample data.

Generates:
- The default Widget / Gadget / Bolt items when the inventory is empty
- Optional random inventory items
- Optional orders, each linked to a random handful of items

Usage:
    python manage.py seed_data
    python manage.py seed_data --items 200 --orders 50
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from core.cache import get_cache_layer, keys
from inventory.models import InventoryItem
from orders.models import Order, OrderItemLink

DEFAULT_ITEMS = [
    ('Widget', 10, 'A1', Decimal('2.99')),
    ('Gadget', 5, 'B2', Decimal('9.49')),
    ('Bolt', 100, 'C3', Decimal('0.10')),
]


class Command(BaseCommand):
    help = 'Seed the database with sample inventory items, orders and order links'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--items',
            type=int,
            default=0,
            help='Number of random items to create on top of the defaults (default: 0)',
        )
        parser.add_argument(
            '--orders',
            type=int,
            default=0,
            help='Number of orders to create (default: 0)',
        )
        parser.add_argument(
            '--max-items-per-order',
            type=int,
            default=5,
            help='Upper bound on items linked to each order (default: 5)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            self._create_default_items()
            if options['items']:
                self._create_random_items(options['items'])
            if options['orders']:
                self._create_orders(options['orders'], options['max_items_per_order'])

        self._invalidate_caches()
        self.stdout.write(self.style.SUCCESS(
            f'Database initialized with {InventoryItem.objects.count()} inventory items '
            f'and {Order.objects.count()} orders.'
        ))

    def _clear_data(self):
        """Clear all existing data."""
        OrderItemLink.objects.all().delete()
        Order.objects.all().delete()
        InventoryItem.objects.all().delete()
        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_default_items(self):
        if InventoryItem.objects.exists():
            self.stdout.write('Inventory not empty, skipping default items')
            return
        InventoryItem.objects.bulk_create([
            InventoryItem.new(name, quantity, location, price)
            for name, quantity, location, price in DEFAULT_ITEMS
        ])
        self.stdout.write(self.style.SUCCESS(f'Seeded {len(DEFAULT_ITEMS)} default items'))

    def _create_random_items(self, count):
        """Create random items with realistic names and locations."""
        base_names = [
            'Hex Bolt', 'Wing Nut', 'Washer', 'Hinge', 'Bracket', 'Cable Tie',
            'Pallet Jack', 'Hand Truck', 'Shelf Unit', 'Storage Bin',
            'Packing Tape', 'Shrink Wrap', 'Label Roll', 'Barcode Scanner',
        ]
        sizes = ['Small', 'Medium', 'Large', 'XL', 'M6', 'M8', 'M10']
        zones = ['A', 'B', 'C', 'D', 'Warehouse A', 'Warehouse B']

        items = []
        for i in range(count):
            zone = random.choice(zones)
            location = zone if zone.startswith('Warehouse') else f"{zone}{random.randint(1, 20)}"
            items.append(InventoryItem.new(
                name=f"{random.choice(sizes)} {random.choice(base_names)}",
                quantity=random.randint(0, 500),
                location=location,
                price=Decimal(str(round(random.uniform(0.05, 250), 2))),
            ))

        InventoryItem.objects.bulk_create(items)
        self.stdout.write(self.style.SUCCESS(f'Created {count} random items'))

    def _create_orders(self, count, max_items_per_order):
        """Create orders and link each to a random sample of items."""
        customers = [
            'Acme Logistics', 'Globex', 'Initech', 'Umbrella Corp',
            'Stark Industries', 'Wayne Enterprises', None,
        ]
        item_ids = list(InventoryItem.objects.values_list('id', flat=True))
        now = timezone.now()

        orders = [
            Order.new(random.choice(customers), now - timedelta(days=random.randint(0, 90)))
            for _ in range(count)
        ]
        for order in orders:
            order.save()

        links = []
        for order in orders:
            k = random.randint(1, max(1, min(max_items_per_order, len(item_ids))))
            for item_id in random.sample(item_ids, k=k):
                links.append(OrderItemLink(order=order, item_id=item_id))
        OrderItemLink.objects.bulk_create(links, ignore_conflicts=True)

        self.stdout.write(self.style.SUCCESS(f'Created {count} orders with {len(links)} item links'))

    def _invalidate_caches(self):
        """Seeding bypasses the services, so drop every item and order entry."""
        cache = get_cache_layer()
        cache.invalidate_prefix(keys.item(""))
        cache.invalidate_prefix(keys.ITEMS)
        cache.invalidate_prefix(keys.order(""))
        cache.invalidate(keys.ORDERS)
