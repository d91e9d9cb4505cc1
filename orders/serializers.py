"""
Serializers for order models.
"""
from rest_framework import serializers

from .models import Order


class OrderSerializer(serializers.ModelSerializer):
    """
    Snapshot serializer for Order.

    Linked items are exposed by id only; item details are read separately
    through the order's item list.
    """
    item_ids = serializers.SerializerMethodField()
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = ['id', 'customer_name', 'date_placed', 'item_ids', 'item_count']
        read_only_fields = ['id']

    def get_item_ids(self, obj):
        # Use prefetched links if available
        if hasattr(obj, '_prefetched_objects_cache') and 'item_links' in obj._prefetched_objects_cache:
            return sorted(link.item_id for link in obj.item_links.all())
        return list(obj.item_links.order_by('item_id').values_list('item_id', flat=True))

    def get_item_count(self, obj):
        return len(self.get_item_ids(obj))


class OrderWriteSerializer(serializers.Serializer):
    """Create/update payload for orders. Both fields are optional."""
    customer_name = serializers.CharField(
        max_length=200,
        required=False,
        allow_blank=True,
        allow_null=True
    )
    date_placed = serializers.DateTimeField(required=False, allow_null=True)


def order_snapshot(order: Order) -> dict:
    """Plain-dict snapshot of an order, as stored in the cache."""
    return dict(OrderSerializer(order).data)


def order_snapshots(orders) -> list:
    return [order_snapshot(order) for order in orders]
