"""Catalog services: categories, products and price history.

Each service inherits the cached generic operations and adds the catalog
queries below.  Every cache a domain method populates is listed in the
service's ``domain_caches``.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import List, Optional

from django.utils import timezone

from modules.catalog.models import Category, PriceHistory, Product
from modules.catalog.repositories.django_repository import (
    CategoryDjangoRepository,
    PriceHistoryDjangoRepository,
    ProductDjangoRepository,
)
from modules.core.exceptions import InvalidPredicate
from modules.core.querying import SortDirection
from modules.core.repositories.interfaces import Aggregate
from modules.core.services import GenericService

# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------

STARTING_WITH_LETTER = "starting-with-letter"
COUNT_STARTING_WITH_LETTER = "count-starting-with-letter"


class CategoryService(GenericService[Category, int]):
    entity_name = "category"
    repository_class = CategoryDjangoRepository
    domain_caches = (STARTING_WITH_LETTER, COUNT_STARTING_WITH_LETTER)
    cascades_to = ("product", "price-history", "invoice-item")

    def find_starting_with_letter(
        self, letter: str, page_index: int = 0, page_size: int = 20
    ) -> List[Category]:
        """Categories whose name starts with ``letter`` (case-insensitive), paginated."""
        letter = _initial(letter)
        descriptor = (
            self._repo.query()
            .starts_with("name", letter, ignore_case=True)
            .page(page_index, page_size)
            .build()
        )
        return self._cached(
            STARTING_WITH_LETTER,
            (letter, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def count_starting_with_letter(self, letter: str) -> int:
        letter = _initial(letter)
        descriptor = self._repo.query().starts_with("name", letter, ignore_case=True).build()
        return self._cached(
            COUNT_STARTING_WITH_LETTER, (letter,), lambda: self._repo.count(descriptor)
        )


def _initial(letter: str) -> str:
    if not letter or not letter.strip():
        raise InvalidPredicate("A starting letter is required.")
    return letter.strip().lower()


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------

BY_CODE = "by-code"
BY_CATEGORY = "by-category"
BY_MANUFACTURER = "by-manufacturer"
SEARCH = "search"
EXISTS_BY_CODE = "exists-by-code"
EXISTS_BY_NAME_MANUFACTURER = "exists-by-name-manufacturer"
COUNT_BY_CATEGORY = "count-by-category"
COUNT_BY_MANUFACTURER = "count-by-manufacturer"


class ProductService(GenericService[Product, int]):
    entity_name = "product"
    repository_class = ProductDjangoRepository
    domain_caches = (
        BY_CODE,
        BY_CATEGORY,
        BY_MANUFACTURER,
        SEARCH,
        EXISTS_BY_CODE,
        EXISTS_BY_NAME_MANUFACTURER,
        COUNT_BY_CATEGORY,
        COUNT_BY_MANUFACTURER,
    )
    cascades_to = ("price-history", "invoice-item")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_code(self, code: str) -> Optional[Product]:
        descriptor = self._repo.query().equals("code", code).build()
        return self._cached(BY_CODE, (code,), lambda: self._repo.find_one(descriptor))

    def find_by_category(self, category_id: int) -> List[Product]:
        category_id = self._normalize_id(category_id)
        descriptor = self._repo.query().equals("category", category_id).build()
        return self._cached(
            BY_CATEGORY, (category_id,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_manufacturer(self, manufacturer: str) -> List[Product]:
        descriptor = self._repo.query().equals("manufacturer", manufacturer).build()
        return self._cached(
            BY_MANUFACTURER, (manufacturer,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def search(
        self,
        term: str,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Product]:
        """Products whose name, code or manufacturer contains ``term`` (any case)."""
        builder = (
            self._repo.query()
            .contains("name", term, ignore_case=True)
            .contains("code", term, ignore_case=True)
            .contains("manufacturer", term, ignore_case=True)
            .match_any()
        )
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            SEARCH,
            (term, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def exists_by_code(self, code: str) -> bool:
        descriptor = self._repo.query().equals("code", code).build()
        return self._cached(EXISTS_BY_CODE, (code,), lambda: self._repo.exists(descriptor))

    def exists_by_name_and_manufacturer(self, name: str, manufacturer: str) -> bool:
        descriptor = (
            self._repo.query().equals("name", name).equals("manufacturer", manufacturer).build()
        )
        return self._cached(
            EXISTS_BY_NAME_MANUFACTURER,
            (name, manufacturer),
            lambda: self._repo.exists(descriptor),
        )

    def count_by_category(self, category_id: int) -> int:
        category_id = self._normalize_id(category_id)
        descriptor = self._repo.query().equals("category", category_id).build()
        return self._cached(COUNT_BY_CATEGORY, (category_id,), lambda: self._repo.count(descriptor))

    def count_by_manufacturer(self, manufacturer: str) -> int:
        descriptor = self._repo.query().equals("manufacturer", manufacturer).build()
        return self._cached(
            COUNT_BY_MANUFACTURER, (manufacturer,), lambda: self._repo.count(descriptor)
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def update_code(self, id: int, code: str) -> int:
        return self.update_field(id, "code", code)

    def delete_by_category(self, category_id: int) -> int:
        descriptor = self._repo.query().equals("category", self._normalize_id(category_id)).build()
        return self._bulk_delete("delete_by_category", descriptor)

    def delete_by_manufacturer(self, manufacturer: str) -> int:
        descriptor = self._repo.query().equals("manufacturer", manufacturer).build()
        return self._bulk_delete("delete_by_manufacturer", descriptor)


# ---------------------------------------------------------------------------
# Price history
# ---------------------------------------------------------------------------

BY_PRODUCT = "by-product"
BY_DATE_RANGE = "by-date-range"
LATEST_BY_PRODUCT = "latest-by-product"
OLDEST_BY_PRODUCT = "oldest-by-product"
PRICE_AT_DATE = "price-at-date"
CURRENT_PRICE = "current-price"
MAX_PRICE = "max-price"
MIN_PRICE = "min-price"
PRICE_TREND = "price-trend"
COUNT_BY_PRODUCT = "count-by-product"
HAS_HISTORY = "has-history"
RECENT_CHANGES = "recent-changes"
PRICE_RANGE = "price-range"


class PriceHistoryService(GenericService[PriceHistory, int]):
    entity_name = "price-history"
    repository_class = PriceHistoryDjangoRepository
    domain_caches = (
        BY_PRODUCT,
        BY_DATE_RANGE,
        LATEST_BY_PRODUCT,
        OLDEST_BY_PRODUCT,
        PRICE_AT_DATE,
        CURRENT_PRICE,
        MAX_PRICE,
        MIN_PRICE,
        PRICE_TREND,
        COUNT_BY_PRODUCT,
        HAS_HISTORY,
        RECENT_CHANGES,
        PRICE_RANGE,
    )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_product(
        self,
        product_id: int,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[PriceHistory]:
        product_id = self._normalize_id(product_id)
        builder = self._for_product(product_id).order_by("change_date", SortDirection.DESC)
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            BY_PRODUCT,
            (product_id, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_by_date_range(
        self,
        start: datetime.date,
        end: datetime.date,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[PriceHistory]:
        builder = self._repo.query().between("change_date", start, end).order_by("change_date")
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            BY_DATE_RANGE,
            (start, end, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_by_price_between(self, low: Decimal, high: Decimal) -> List[PriceHistory]:
        descriptor = self._repo.query().between("price", low, high).order_by("price").build()
        return self._cached(
            PRICE_RANGE, (low, high), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_latest_by_product(self, product_id: int) -> Optional[PriceHistory]:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).order_by("change_date", SortDirection.DESC).build()
        return self._cached(LATEST_BY_PRODUCT, (product_id,), lambda: self._repo.find_one(descriptor))

    def find_oldest_by_product(self, product_id: int) -> Optional[PriceHistory]:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).order_by("change_date").build()
        return self._cached(OLDEST_BY_PRODUCT, (product_id,), lambda: self._repo.find_one(descriptor))

    def find_price_at_date(self, product_id: int, date: datetime.date) -> Optional[PriceHistory]:
        """The price entry in force on ``date``: the latest change on or before it."""
        product_id = self._normalize_id(product_id)
        descriptor = (
            self._for_product(product_id)
            .at_most("change_date", date)
            .order_by("change_date", SortDirection.DESC)
            .build()
        )
        return self._cached(
            PRICE_AT_DATE, (product_id, date), lambda: self._repo.find_one(descriptor)
        )

    def current_price(self, product_id: int) -> Optional[Decimal]:
        product_id = self._normalize_id(product_id)
        descriptor = (
            self._for_product(product_id)
            .at_most("change_date", timezone.localdate())
            .order_by("change_date", SortDirection.DESC)
            .build()
        )

        def compute() -> Optional[Decimal]:
            entry = self._repo.find_one(descriptor)
            return entry.price if entry is not None else None

        return self._cached(CURRENT_PRICE, (product_id, timezone.localdate()), compute)

    def max_price(self, product_id: int) -> Optional[Decimal]:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).build()
        return self._cached(
            MAX_PRICE,
            (product_id,),
            lambda: self._repo.aggregate(descriptor, Aggregate.MAX, "price"),
        )

    def min_price(self, product_id: int) -> Optional[Decimal]:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).build()
        return self._cached(
            MIN_PRICE,
            (product_id,),
            lambda: self._repo.aggregate(descriptor, Aggregate.MIN, "price"),
        )

    def price_trend(self, product_id: int, limit: int) -> List[PriceHistory]:
        """The ``limit`` most recent price changes, newest first."""
        product_id = self._normalize_id(product_id)
        descriptor = (
            self._for_product(product_id)
            .order_by("change_date", SortDirection.DESC)
            .page(0, limit)
            .build()
        )
        return self._cached(
            PRICE_TREND, (product_id, limit), lambda: self._repo.find_by_predicate(descriptor)
        )

    def count_by_product(self, product_id: int) -> int:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).build()
        return self._cached(COUNT_BY_PRODUCT, (product_id,), lambda: self._repo.count(descriptor))

    def has_history(self, product_id: int) -> bool:
        product_id = self._normalize_id(product_id)
        descriptor = self._for_product(product_id).build()
        return self._cached(HAS_HISTORY, (product_id,), lambda: self._repo.exists(descriptor))

    def recent_changes(self, days: int) -> List[PriceHistory]:
        if days < 0:
            raise InvalidPredicate("days must not be negative.")
        since = timezone.localdate() - datetime.timedelta(days=days)
        descriptor = (
            self._repo.query()
            .at_least("change_date", since)
            .order_by("change_date", SortDirection.DESC)
            .build()
        )
        return self._cached(
            RECENT_CHANGES, (days, since), lambda: self._repo.find_by_predicate(descriptor)
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def update_price(self, id: int, price: Decimal) -> int:
        return self.update_field(id, "price", price)

    def update_prices_for_product(self, product_id: int, price: Decimal) -> int:
        descriptor = self._for_product(self._normalize_id(product_id)).build()
        return self._bulk_update("update_prices_for_product", descriptor, {"price": price})

    def delete_by_product(self, product_id: int) -> int:
        descriptor = self._for_product(self._normalize_id(product_id)).build()
        return self._bulk_delete("delete_by_product", descriptor)

    def delete_by_date_range(self, start: datetime.date, end: datetime.date) -> int:
        descriptor = self._repo.query().between("change_date", start, end).build()
        return self._bulk_delete("delete_by_date_range", descriptor)

    def _for_product(self, product_id: int):
        return self._repo.query().equals("product", product_id)
