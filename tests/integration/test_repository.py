"""Integration tests for DjangoRepository against the test database.

Covers reads (lookup, predicates, paging, counting, aggregates), writes
(save, update, partial and bulk updates, deletes) and error wrapping.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import OperationalError

from modules.catalog.models import Category, PriceHistory, Product
from modules.catalog.repositories.django_repository import (
    CategoryDjangoRepository,
    PriceHistoryDjangoRepository,
    ProductDjangoRepository,
)
from modules.core.exceptions import InvalidPredicate, NotFound, RepositoryError
from modules.core.querying import SortDirection
from modules.core.repositories.interfaces import Aggregate
from modules.invoicing.repositories.django_repository import InvoiceItemDjangoRepository

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def categories():
    return CategoryDjangoRepository()


@pytest.fixture()
def products():
    return ProductDjangoRepository()


@pytest.fixture()
def electronics():
    return Category.objects.create(name="Electronics")


@pytest.fixture()
def catalog(electronics):
    furniture = Category.objects.create(name="Furniture")
    return [
        Product.objects.create(code="E-1", name="Monitor", category=electronics, manufacturer="Vision"),
        Product.objects.create(code="E-2", name="Keyboard", category=electronics, manufacturer="KeyWorks"),
        Product.objects.create(code="F-1", name="Desk", category=furniture, manufacturer="Madeira"),
    ]


# ===========================================================================
# Reads
# ===========================================================================


class TestReads:
    def test_find_by_id(self, categories, electronics):
        assert categories.find_by_id(electronics.pk) == electronics

    def test_find_by_id_missing(self, categories):
        assert categories.find_by_id(999_999) is None

    def test_find_by_id_malformed(self, categories):
        assert categories.find_by_id("not-a-number") is None

    def test_find_by_predicate_sorted_by_name(self, products, catalog):
        names = [p.name for p in products.find_by_predicate(products.all())]
        assert names == ["Desk", "Keyboard", "Monitor"]

    def test_find_by_predicate_descending(self, products, catalog):
        descriptor = products.query().order_by("code", SortDirection.DESC).build()
        assert [p.code for p in products.find_by_predicate(descriptor)] == ["F-1", "E-2", "E-1"]

    def test_filter_on_related_field(self, products, catalog):
        descriptor = products.query().equals("category__name", "Electronics").build()
        assert {p.code for p in products.find_by_predicate(descriptor)} == {"E-1", "E-2"}

    def test_match_any(self, products, catalog):
        descriptor = (
            products.query()
            .equals("manufacturer", "Vision")
            .equals("manufacturer", "Madeira")
            .match_any()
            .build()
        )
        assert products.count(descriptor) == 2

    def test_paging(self, products, catalog):
        descriptor = products.query().page(1, 2).build()
        assert [p.name for p in products.find_by_predicate(descriptor)] == ["Monitor"]

    def test_page_beyond_end_is_empty(self, products, catalog):
        descriptor = products.query().page(5, 2).build()
        assert products.find_by_predicate(descriptor) == []

    def test_find_one(self, products, catalog):
        descriptor = products.query().equals("code", "E-2").build()
        assert products.find_one(descriptor).name == "Keyboard"

    def test_find_one_none(self, products, catalog):
        assert products.find_one(products.query().equals("code", "X").build()) is None

    def test_count_and_exists(self, products, catalog):
        descriptor = products.query().contains("name", "o").build()
        assert products.count(descriptor) == 2
        assert products.exists(descriptor) is True
        assert products.exists(products.query().equals("code", "nope").build()) is False

    @pytest.mark.parametrize("size, expected", [(1, 3), (2, 2), (3, 1), (10, 1)])
    def test_page_count(self, products, catalog, size, expected):
        assert products.page_count(products.all(), size) == expected

    def test_page_count_of_empty_table(self, categories):
        assert categories.page_count(categories.all(), 10) == 0

    def test_page_count_rejects_zero(self, products):
        with pytest.raises(InvalidPredicate):
            products.page_count(products.all(), 0)

    def test_distinct_values(self, products, catalog):
        assert products.distinct_values(products.all(), "manufacturer") == [
            "KeyWorks",
            "Madeira",
            "Vision",
        ]

    def test_unknown_field_rejected(self, products):
        with pytest.raises(InvalidPredicate):
            products.distinct_values(products.all(), "secret")

    def test_aggregates(self, catalog):
        history = PriceHistoryDjangoRepository()
        for day, price in ((1, "10.00"), (2, "30.00")):
            PriceHistory.objects.create(
                product=catalog[0], change_date=datetime.date(2024, 1, day), price=Decimal(price)
            )
        descriptor = history.query().equals("product", catalog[0].pk).build()
        assert history.aggregate(descriptor, Aggregate.MAX, "price") == Decimal("30.00")
        assert history.aggregate(descriptor, "sum", "price") == Decimal("40.00")
        assert history.aggregate(descriptor, Aggregate.COUNT, "price") == 2

    def test_aggregate_over_nothing_is_none(self):
        history = PriceHistoryDjangoRepository()
        assert history.aggregate(history.all(), Aggregate.AVG, "price") is None

    def test_unknown_aggregate_rejected(self):
        history = PriceHistoryDjangoRepository()
        with pytest.raises(InvalidPredicate):
            history.aggregate(history.all(), "median", "price")

    def test_revenue_of_no_items(self):
        items = InvoiceItemDjangoRepository()
        assert items.revenue(items.all()) == Decimal("0.00")


# ===========================================================================
# Writes
# ===========================================================================


class TestWrites:
    def test_save_assigns_id(self, categories):
        saved = categories.save(Category(name="Garden"))
        assert saved.pk is not None
        assert Category.objects.filter(name="Garden").exists()

    def test_save_duplicate_wraps_integrity_error(self, categories, electronics):
        with pytest.raises(RepositoryError) as exc_info:
            categories.save(Category(name="Electronics"))
        assert exc_info.value.operation == "save"
        assert exc_info.value.entity == "category"
        assert exc_info.value.__cause__ is not None

    def test_save_all(self, categories):
        saved = categories.save_all([Category(name="A"), Category(name="B")])
        assert all(c.pk for c in saved)
        assert Category.objects.count() == 2

    def test_update(self, categories, electronics):
        electronics.name = "Gadgets"
        categories.update(electronics)
        assert Category.objects.get(pk=electronics.pk).name == "Gadgets"

    def test_update_without_id(self, categories):
        with pytest.raises(NotFound):
            categories.update(Category(name="Ghost"))

    def test_update_missing_row(self, categories):
        with pytest.raises(NotFound):
            categories.update(Category(id=999_999, name="Ghost"))
        assert not Category.objects.filter(pk=999_999).exists()

    def test_update_field(self, categories, electronics):
        assert categories.update_field(electronics.pk, "name", "Gadgets") == 1
        assert Category.objects.get(pk=electronics.pk).name == "Gadgets"

    def test_update_field_missing_row(self, categories):
        assert categories.update_field(999_999, "name", "x") == 0

    def test_update_field_malformed_id(self, categories):
        assert categories.update_field("abc", "name", "x") == 0

    def test_update_field_refreshes_updated_at(self, categories, electronics):
        before = electronics.updated_at
        categories.update_field(electronics.pk, "name", "Gadgets")
        assert Category.objects.get(pk=electronics.pk).updated_at >= before

    def test_update_unknown_field_rejected(self, categories, electronics):
        with pytest.raises(InvalidPredicate):
            categories.update_field(electronics.pk, "id", 5)

    def test_update_fields_requires_values(self, categories, electronics):
        with pytest.raises(InvalidPredicate):
            categories.update_fields(electronics.pk, {})

    def test_update_by_predicate(self, products, catalog):
        descriptor = products.query().equals("manufacturer", "KeyWorks").build()
        assert products.update_by_predicate(descriptor, {"manufacturer": "KW"}) == 1
        assert Product.objects.filter(manufacturer="KW").count() == 1

    def test_delete_by_id(self, categories, electronics):
        assert categories.delete_by_id(electronics.pk) is True
        assert categories.delete_by_id(electronics.pk) is False

    def test_delete_by_id_malformed(self, categories):
        assert categories.delete_by_id("abc") is False

    def test_delete_cascades_but_counts_own_rows(self, categories, electronics, catalog):
        assert categories.delete_by_id(electronics.pk) is True
        assert Product.objects.count() == 1

    def test_delete_by_predicate(self, products, catalog):
        descriptor = products.query().starts_with("code", "E-").build()
        assert products.delete_by_predicate(descriptor) == 2
        assert Product.objects.count() == 1


# ===========================================================================
# Error wrapping
# ===========================================================================


class TestStoreErrors:
    def test_database_error_wrapped_with_context(self, products):
        descriptor = products.query().equals("code", "E-1").build()
        with patch("django.db.models.query.QuerySet.count", side_effect=OperationalError("gone")):
            with pytest.raises(RepositoryError) as exc_info:
                products.count(descriptor)
        assert exc_info.value.operation == "count"
        assert "code equals 'E-1'" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OperationalError)
