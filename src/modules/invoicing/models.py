"""Invoice models.

Invoices reference a customer and the settlement they were issued in; both
are protected from deletion while invoices point at them.  Items belong to
an invoice (removed with it) and reference a protected product.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from modules.catalog.models import Product
from modules.core.models import BaseModel
from modules.customers.models import Customer
from modules.geography.models import Settlement


class Invoice(BaseModel):
    invoice_date = models.DateField()
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    total_amount = models.DecimalField(max_digits=15, decimal_places=2)
    enterprise = models.CharField(max_length=200)

    class Meta:
        db_table = "invoices"
        ordering = ["-invoice_date", "-id"]
        indexes = [
            models.Index(fields=["invoice_date"], name="invoices_date_idx"),
            models.Index(fields=["customer", "invoice_date"], name="invoices_customer_date_idx"),
        ]

    def __str__(self) -> str:
        return f"Invoice {self.pk} ({self.invoice_date}, {self.total_amount})"


class InvoiceItem(BaseModel):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="invoice_items",
    )
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=15, decimal_places=2)

    class Meta:
        db_table = "invoice_items"
        ordering = ["id"]

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    def __str__(self) -> str:
        return f"{self.quantity} x {self.product_id} @ {self.price}"
