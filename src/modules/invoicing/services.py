"""Invoice and invoice item services.

Monetary aggregates return ``Decimal``; sums over an empty selection are
``Decimal("0.00")`` while averages, minimums and maximums are ``None``.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from django.utils import timezone

from modules.core.exceptions import InvalidPredicate
from modules.core.querying import SortDirection
from modules.core.repositories.interfaces import Aggregate
from modules.core.services import GenericService
from modules.invoicing.models import Invoice, InvoiceItem
from modules.invoicing.repositories.django_repository import (
    InvoiceDjangoRepository,
    InvoiceItemDjangoRepository,
)

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Invoice
# ---------------------------------------------------------------------------

BY_CUSTOMER = "by-customer"
BY_SETTLEMENT = "by-settlement"
BY_DATE_RANGE = "by-date-range"
BY_ENTERPRISE = "by-enterprise"
REVENUE_BY_CUSTOMER = "revenue-by-customer"
AVERAGE_AMOUNT = "average-amount"
MAX_AMOUNT = "max-amount"
MIN_AMOUNT = "min-amount"
COUNT_BY_DATE_RANGE = "count-by-date-range"
TOP_BY_AMOUNT = "top-by-amount"
RECENT = "recent"
EXISTS_BY_CUSTOMER_DATE = "exists-by-customer-date"
AMOUNT_BETWEEN = "amount-between"
AMOUNT_GREATER_THAN = "amount-greater-than"
AMOUNT_LESS_THAN = "amount-less-than"


class InvoiceService(GenericService[Invoice, int]):
    entity_name = "invoice"
    repository_class = InvoiceDjangoRepository
    domain_caches = (
        BY_CUSTOMER,
        BY_SETTLEMENT,
        BY_DATE_RANGE,
        BY_ENTERPRISE,
        REVENUE_BY_CUSTOMER,
        AVERAGE_AMOUNT,
        MAX_AMOUNT,
        MIN_AMOUNT,
        COUNT_BY_DATE_RANGE,
        TOP_BY_AMOUNT,
        RECENT,
        EXISTS_BY_CUSTOMER_DATE,
        AMOUNT_BETWEEN,
        AMOUNT_GREATER_THAN,
        AMOUNT_LESS_THAN,
    )
    cascades_to = ("invoice-item",)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_customer(self, customer_id: int) -> List[Invoice]:
        customer_id = self._normalize_id(customer_id)
        descriptor = self._newest_first().equals("customer", customer_id).build()
        return self._cached(
            BY_CUSTOMER, (customer_id,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_settlement(self, settlement_id: int) -> List[Invoice]:
        settlement_id = self._normalize_id(settlement_id)
        descriptor = self._newest_first().equals("settlement", settlement_id).build()
        return self._cached(
            BY_SETTLEMENT, (settlement_id,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_date_range(
        self,
        start: datetime.date,
        end: datetime.date,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Invoice]:
        builder = self._repo.query().between("invoice_date", start, end).order_by("invoice_date")
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            BY_DATE_RANGE,
            (start, end, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_by_enterprise(self, enterprise: str) -> List[Invoice]:
        descriptor = self._newest_first().equals("enterprise", enterprise).build()
        return self._cached(
            BY_ENTERPRISE, (enterprise,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_amount_between(self, low: Decimal, high: Decimal) -> List[Invoice]:
        descriptor = (
            self._repo.query().between("total_amount", low, high).order_by("total_amount").build()
        )
        return self._cached(
            AMOUNT_BETWEEN, (low, high), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_amount_greater_than(self, amount: Decimal) -> List[Invoice]:
        descriptor = (
            self._repo.query().greater_than("total_amount", amount).order_by("total_amount").build()
        )
        return self._cached(
            AMOUNT_GREATER_THAN, (amount,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_amount_less_than(self, amount: Decimal) -> List[Invoice]:
        descriptor = (
            self._repo.query().less_than("total_amount", amount).order_by("total_amount").build()
        )
        return self._cached(
            AMOUNT_LESS_THAN, (amount,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def total_revenue_by_customer(self, customer_id: int) -> Decimal:
        customer_id = self._normalize_id(customer_id)
        descriptor = self._repo.query().equals("customer", customer_id).build()

        def compute() -> Decimal:
            total = self._repo.aggregate(descriptor, Aggregate.SUM, "total_amount")
            return total if total is not None else Decimal("0.00")

        return self._cached(REVENUE_BY_CUSTOMER, (customer_id,), compute)

    def average_amount(self) -> Optional[Decimal]:
        return self._amount_aggregate(AVERAGE_AMOUNT, Aggregate.AVG)

    def max_amount(self) -> Optional[Decimal]:
        return self._amount_aggregate(MAX_AMOUNT, Aggregate.MAX)

    def min_amount(self) -> Optional[Decimal]:
        return self._amount_aggregate(MIN_AMOUNT, Aggregate.MIN)

    def count_by_date_range(self, start: datetime.date, end: datetime.date) -> int:
        descriptor = self._repo.query().between("invoice_date", start, end).build()
        return self._cached(COUNT_BY_DATE_RANGE, (start, end), lambda: self._repo.count(descriptor))

    def top_by_amount(self, limit: int) -> List[Invoice]:
        """The ``limit`` largest invoices, largest first."""
        descriptor = (
            self._repo.query()
            .order_by("total_amount", SortDirection.DESC)
            .page(0, limit)
            .build()
        )
        return self._cached(TOP_BY_AMOUNT, (limit,), lambda: self._repo.find_by_predicate(descriptor))

    def recent(self, days: int) -> List[Invoice]:
        """Invoices dated within the last ``days`` days, newest first."""
        if days < 0:
            raise InvalidPredicate("days must not be negative.")
        since = timezone.localdate() - datetime.timedelta(days=days)
        descriptor = self._newest_first().at_least("invoice_date", since).build()
        return self._cached(RECENT, (days, since), lambda: self._repo.find_by_predicate(descriptor))

    def exists_by_customer_and_date(self, customer_id: int, date: datetime.date) -> bool:
        customer_id = self._normalize_id(customer_id)
        descriptor = (
            self._repo.query().equals("customer", customer_id).equals("invoice_date", date).build()
        )
        return self._cached(
            EXISTS_BY_CUSTOMER_DATE, (customer_id, date), lambda: self._repo.exists(descriptor)
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def update_total_amount(self, id: int, amount: Decimal) -> int:
        return self.update_field(id, "total_amount", amount)

    def set_amount_for_customer(self, customer_id: int, amount: Decimal) -> int:
        descriptor = self._repo.query().equals("customer", self._normalize_id(customer_id)).build()
        affected = self._bulk_update(
            "set_amount_for_customer", descriptor, {"total_amount": amount}
        )
        logger.info("invoice.amounts_overwritten", customer_id=customer_id, affected=affected)
        return affected

    def delete_by_date_range(self, start: datetime.date, end: datetime.date) -> int:
        descriptor = self._repo.query().between("invoice_date", start, end).build()
        return self._bulk_delete("delete_by_date_range", descriptor)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _newest_first(self):
        return self._repo.query().order_by("invoice_date", SortDirection.DESC)

    def _amount_aggregate(self, suffix: str, function: Aggregate) -> Optional[Decimal]:
        descriptor = self._repo.query().build()
        return self._cached(
            suffix, (), lambda: self._repo.aggregate(descriptor, function, "total_amount")
        )


# ---------------------------------------------------------------------------
# Invoice item
# ---------------------------------------------------------------------------

BY_INVOICE = "by-invoice"
BY_PRODUCT = "by-product"
COUNT_BY_INVOICE = "count-by-invoice"
EXISTS_BY_INVOICE_PRODUCT = "exists-by-invoice-product"
TOTAL_REVENUE = "total-revenue"
INVOICE_TOTAL = "invoice-total"
PRICE_RANGE = "price-range"


class InvoiceItemService(GenericService[InvoiceItem, int]):
    entity_name = "invoice-item"
    repository_class = InvoiceItemDjangoRepository
    domain_caches = (
        BY_INVOICE,
        BY_PRODUCT,
        COUNT_BY_INVOICE,
        EXISTS_BY_INVOICE_PRODUCT,
        TOTAL_REVENUE,
        INVOICE_TOTAL,
        PRICE_RANGE,
    )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_invoice(self, invoice_id: int) -> List[InvoiceItem]:
        invoice_id = self._normalize_id(invoice_id)
        descriptor = self._repo.query().equals("invoice", invoice_id).build()
        return self._cached(
            BY_INVOICE, (invoice_id,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_product(self, product_id: int) -> List[InvoiceItem]:
        product_id = self._normalize_id(product_id)
        descriptor = self._repo.query().equals("product", product_id).build()
        return self._cached(
            BY_PRODUCT, (product_id,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_price_between(self, low: Decimal, high: Decimal) -> List[InvoiceItem]:
        descriptor = self._repo.query().between("price", low, high).order_by("price").build()
        return self._cached(
            PRICE_RANGE, (low, high), lambda: self._repo.find_by_predicate(descriptor)
        )

    def count_by_invoice(self, invoice_id: int) -> int:
        invoice_id = self._normalize_id(invoice_id)
        descriptor = self._repo.query().equals("invoice", invoice_id).build()
        return self._cached(COUNT_BY_INVOICE, (invoice_id,), lambda: self._repo.count(descriptor))

    def exists_by_invoice_and_product(self, invoice_id: int, product_id: int) -> bool:
        invoice_id = self._normalize_id(invoice_id)
        product_id = self._normalize_id(product_id)
        descriptor = (
            self._repo.query().equals("invoice", invoice_id).equals("product", product_id).build()
        )
        return self._cached(
            EXISTS_BY_INVOICE_PRODUCT,
            (invoice_id, product_id),
            lambda: self._repo.exists(descriptor),
        )

    def total_revenue(self) -> Decimal:
        """Sum of ``quantity * price`` over every item."""
        descriptor = self._repo.query().build()
        return self._cached(TOTAL_REVENUE, (), lambda: self._repo.revenue(descriptor))

    def invoice_total(self, invoice_id: int) -> Decimal:
        invoice_id = self._normalize_id(invoice_id)
        descriptor = self._repo.query().equals("invoice", invoice_id).build()
        return self._cached(INVOICE_TOTAL, (invoice_id,), lambda: self._repo.revenue(descriptor))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def update_quantity(self, id: int, quantity: int) -> int:
        return self.update_field(id, "quantity", quantity)

    def update_price(self, id: int, price: Decimal) -> int:
        return self.update_field(id, "price", price)

    def update_quantity_and_price(self, id: int, quantity: int, price: Decimal) -> int:
        return self.update_fields(id, {"quantity": quantity, "price": price})

    def set_price_for_product(self, product_id: int, price: Decimal) -> int:
        descriptor = self._repo.query().equals("product", self._normalize_id(product_id)).build()
        return self._bulk_update("set_price_for_product", descriptor, {"price": price})

    def delete_by_invoice(self, invoice_id: int) -> int:
        descriptor = self._repo.query().equals("invoice", self._normalize_id(invoice_id)).build()
        return self._bulk_delete("delete_by_invoice", descriptor)
