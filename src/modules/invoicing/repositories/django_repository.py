"""Django ORM repositories of the invoicing module."""

from __future__ import annotations

from decimal import Decimal

from django.db.models import DecimalField, F, Sum

from modules.core.querying import QueryDescriptor
from modules.core.repositories.django_repository import DjangoRepository
from modules.invoicing.models import Invoice, InvoiceItem


class InvoiceDjangoRepository(DjangoRepository[Invoice, int]):
    model = Invoice
    entity_name = "invoice"
    queryable_fields = (
        "invoice_date",
        "customer",
        "settlement",
        "settlement__region",
        "total_amount",
        "enterprise",
        "created_at",
        "updated_at",
    )
    default_sort_field = "invoice_date"
    related = ("customer", "settlement")


class InvoiceItemDjangoRepository(DjangoRepository[InvoiceItem, int]):
    model = InvoiceItem
    entity_name = "invoice-item"
    queryable_fields = (
        "invoice",
        "invoice__customer",
        "invoice__invoice_date",
        "product",
        "quantity",
        "price",
    )
    related = ("product",)

    def revenue(self, descriptor: QueryDescriptor) -> Decimal:
        """Sum of ``quantity * price`` over the matching items."""
        queryset = self._filtered(descriptor, related=False)
        expression = Sum(
            F("quantity") * F("price"),
            output_field=DecimalField(max_digits=20, decimal_places=2),
        )
        total = self._run(
            "revenue",
            self._context(descriptor),
            lambda: queryset.aggregate(result=expression)["result"],
        )
        return total if total is not None else Decimal("0.00")
