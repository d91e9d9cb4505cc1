"""
Management command running the cache reconciliation loop in the foreground.

Usage:
    python manage.py sync_inventory
    python manage.py sync_inventory --interval 60
    python manage.py sync_inventory --once
"""
import signal

from django.core.management.base import BaseCommand

from inventory.tasks import build_sync_loop


class Command(BaseCommand):
    help = 'Periodically resynchronise the inventory and order caches with the database'

    def add_arguments(self, parser):
        parser.add_argument(
            '--interval',
            type=float,
            default=None,
            help='Seconds between ticks (default: INVENTORY_SYNC_INTERVAL setting)',
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single tick and exit',
        )

    def handle(self, *args, **options):
        loop = build_sync_loop(interval=options['interval'])

        if options['once']:
            counts = loop.tick()
            if counts is None:
                self.stdout.write(self.style.WARNING('Sync skipped: store unavailable'))
            else:
                self.stdout.write(self.style.SUCCESS(
                    f"Synced {counts['items']} inventory items and {counts['orders']} orders"
                ))
            return

        def shutdown(signum, frame):
            self.stdout.write('Stopping reconciliation loop...')
            loop.stop_event.set()

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        self.stdout.write(f'Reconciliation loop running every {loop.interval}s')
        loop.run()
        self.stdout.write(self.style.SUCCESS('Reconciliation loop stopped'))
