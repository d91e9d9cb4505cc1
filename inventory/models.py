"""
Inventory Models - Core data entity for the inventory management system.

Models:
    - InventoryItem: A stocked item with quantity, storage location and unit price
"""
from decimal import Decimal, InvalidOperation

from django.core.validators import MinValueValidator
from django.db import models

from core.exceptions import ValidationFailed


def parse_price(value) -> Decimal:
    """Convert a caller-supplied price, rejecting values that are not numbers."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationFailed({'price': [f'"{value}" value must be a decimal number.']})


class InventoryItem(models.Model):
    """
    A stocked inventory item.

    The id is assigned by the database on insert and never taken from the
    caller. Use InventoryItem.new() to build records for creation.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Item name (required)"
    )
    quantity = models.PositiveIntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Units in stock"
    )
    location = models.CharField(
        max_length=200,
        blank=True,
        default='',
        db_index=True,
        help_text="Storage location, e.g. aisle or bin"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Unit price (non-negative)"
    )

    class Meta:
        db_table = 'inventory_items'
        verbose_name = 'Inventory Item'
        verbose_name_plural = 'Inventory Items'
        ordering = ['id']

    def __str__(self):
        return (
            f"ItemId: {self.id}, Name: {self.name}, "
            f"Quantity: {self.quantity}, Location: {self.location}"
        )

    @classmethod
    def new(cls, name: str, quantity: int = 0, location: str = '', price=Decimal('0.00')) -> 'InventoryItem':
        """Build an unsaved item. The store assigns the id on insert."""
        return cls(
            name=name,
            quantity=quantity,
            location=location or '',
            price=parse_price(price),
        )

    def update_quantity(self, quantity: int) -> None:
        self.quantity = quantity

    def update_location(self, location: str) -> None:
        self.location = location

    def update_price(self, price) -> None:
        self.price = parse_price(price)

    def display_info(self) -> str:
        return f"Item: {self.name} | Quantity: {self.quantity} | Location: {self.location}"

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == 0
