"""
Order Models - Orders and their many-to-many links to inventory items.

An OrderItemLink is keyed by (order, item). Deleting either side cascades to
its links; deleting a link leaves both sides in place.
"""
from django.db import models
from django.utils import timezone

from inventory.models import InventoryItem

UNKNOWN_CUSTOMER = 'unknown'


class Order(models.Model):
    """
    A customer order.

    Items are attached through OrderItemLink rows, one per distinct item.
    """
    customer_name = models.CharField(
        max_length=200,
        default=UNKNOWN_CUSTOMER,
        help_text="Customer who placed the order"
    )
    date_placed = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the order was placed"
    )

    class Meta:
        db_table = 'orders'
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['id']

    def __str__(self):
        return f"Order #{self.id} - {self.customer_name}"

    @classmethod
    def new(cls, customer_name=None, date_placed=None) -> 'Order':
        """Build an unsaved order, applying the customer and date defaults."""
        return cls(
            customer_name=(customer_name or '').strip() or UNKNOWN_CUSTOMER,
            date_placed=date_placed or timezone.now(),
        )

    @property
    def item_count(self) -> int:
        return self.item_links.count()

    def summary(self) -> str:
        return (
            f"Order #{self.id} for {self.customer_name} | Items: {self.item_count} | "
            f"Placed: {self.date_placed.date().isoformat()}"
        )


class OrderItemLink(models.Model):
    """
    Association between an order and an inventory item.

    Constraint: at most one link per (order, item) pair.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='item_links',
        help_text="Linked order"
    )
    item = models.ForeignKey(
        InventoryItem,
        on_delete=models.CASCADE,
        related_name='order_links',
        help_text="Linked inventory item"
    )

    class Meta:
        db_table = 'order_item_links'
        verbose_name = 'Order Item Link'
        verbose_name_plural = 'Order Item Links'
        ordering = ['order_id', 'item_id']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'item'],
                name='unique_order_item_link'
            )
        ]

    def __str__(self):
        return f"Order #{self.order_id} -> Item #{self.item_id}"
