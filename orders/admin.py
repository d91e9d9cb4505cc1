"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItemLink


class OrderItemLinkInline(admin.TabularInline):
    model = OrderItemLink
    extra = 0
    raw_id_fields = ['item']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer_name', 'date_placed', 'item_count']
    list_filter = ['date_placed']
    search_fields = ['id', 'customer_name']
    ordering = ['-date_placed']
    inlines = [OrderItemLinkInline]

    def item_count(self, obj):
        return obj.item_links.count()
    item_count.short_description = 'Items'


@admin.register(OrderItemLink)
class OrderItemLinkAdmin(admin.ModelAdmin):
    list_display = ['id', 'order', 'item']
    search_fields = ['item__name', 'order__customer_name']
    ordering = ['order', 'item']
    raw_id_fields = ['order', 'item']
