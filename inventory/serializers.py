"""
Serializers for inventory items.

The same serializer produces the cached snapshots, so decimals stay strings
and survive a JSON round trip without losing precision.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import InventoryItem


class InventoryItemSerializer(serializers.ModelSerializer):
    """Snapshot and write serializer for InventoryItem. The id is never writable."""
    price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0')
    )
    quantity = serializers.IntegerField(min_value=0, default=0)

    class Meta:
        model = InventoryItem
        fields = ['id', 'name', 'quantity', 'location', 'price']
        read_only_fields = ['id']


class InventoryItemUpdateSerializer(serializers.Serializer):
    """Partial update payload: any subset of the mutable attributes."""
    name = serializers.CharField(max_length=200, required=False)
    quantity = serializers.IntegerField(min_value=0, required=False)
    location = serializers.CharField(max_length=200, required=False, allow_blank=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0'), required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field must be provided")
        return attrs


def item_snapshot(item: InventoryItem) -> dict:
    """Plain-dict snapshot of an item, as stored in the cache."""
    return dict(InventoryItemSerializer(item).data)


def item_snapshots(items) -> list:
    return [item_snapshot(item) for item in items]
