"""
Django Admin configuration for inventory models.
"""
from django.contrib import admin
from .models import InventoryItem


@admin.register(InventoryItem)
class InventoryItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'quantity', 'location', 'price', 'order_count']
    list_filter = ['location']
    search_fields = ['name', 'location']
    ordering = ['id']

    def order_count(self, obj):
        return obj.order_links.count()
    order_count.short_description = 'Orders'
