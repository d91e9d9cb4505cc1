"""
Celery application for background inventory work.

Beat schedule:
    - sync-inventory-cache: reconciliation tick every INVENTORY_SYNC_INTERVAL seconds
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('logitrack')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
