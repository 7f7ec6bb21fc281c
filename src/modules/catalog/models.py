"""Catalog models: categories, products and their price history.

- Category names are unique.
- Product codes are unique; a product belongs to exactly one category and
  is removed together with it.
- Price history rows record the price of a product from ``change_date`` on.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel, NamedModel


class Category(NamedModel):
    class Meta:
        db_table = "categories"
        ordering = ["name"]
        verbose_name_plural = "categories"


class Product(BaseModel):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    category = models.ForeignKey(
        Category,
        on_delete=models.CASCADE,
        related_name="products",
    )
    manufacturer = models.CharField(max_length=200)

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="products_name_idx"),
            models.Index(fields=["manufacturer"], name="products_manufacturer_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class PriceHistory(BaseModel):
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name="price_history",
    )
    change_date = models.DateField()
    price = models.DecimalField(max_digits=15, decimal_places=2)

    class Meta:
        db_table = "price_history"
        ordering = ["-change_date"]
        verbose_name_plural = "price history"
        indexes = [
            models.Index(fields=["product", "change_date"], name="price_product_date_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.product_id} @ {self.change_date}: {self.price}"
