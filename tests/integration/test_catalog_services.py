"""Integration tests for the product and price history services."""

from __future__ import annotations

import datetime
from decimal import Decimal

import pytest
from freezegun import freeze_time

from modules.catalog.models import Category, PriceHistory, Product
from modules.catalog.services import PriceHistoryService, ProductService
from modules.core.exceptions import InvalidPredicate

pytestmark = pytest.mark.integration


@pytest.fixture()
def gadgets():
    return Category.objects.create(name="Gadgets")


@pytest.fixture()
def monitor(gadgets):
    return Product.objects.create(code="MON-27", name="Monitor 27", category=gadgets, manufacturer="Vision")


@pytest.fixture()
def history(monitor):
    prices = (
        (datetime.date(2024, 1, 1), Decimal("1000.00")),
        (datetime.date(2024, 3, 1), Decimal("1100.00")),
        (datetime.date(2024, 6, 1), Decimal("950.00")),
    )
    return [
        PriceHistory.objects.create(product=monitor, change_date=day, price=price)
        for day, price in prices
    ]


@pytest.fixture()
def price_service():
    return PriceHistoryService()


@pytest.fixture()
def product_service():
    return ProductService()


# ===========================================================================
# Products
# ===========================================================================


class TestProductService:
    def test_find_by_code(self, product_service, monitor):
        assert product_service.find_by_code("MON-27") == monitor
        assert product_service.find_by_code("nope") is None

    def test_search_matches_any_field(self, product_service, gadgets, monitor):
        Product.objects.create(code="KB-1", name="Keyboard", category=gadgets, manufacturer="KeyWorks")
        assert {p.code for p in product_service.search("vision")} == {"MON-27"}
        assert {p.code for p in product_service.search("kb-")} == {"KB-1"}
        assert len(product_service.search("o", page_index=0, page_size=1)) == 1

    def test_by_category(self, product_service, gadgets, monitor):
        assert product_service.find_by_category(gadgets.pk) == [monitor]
        assert product_service.count_by_category(str(gadgets.pk)) == 1

    def test_exists_by_name_and_manufacturer(self, product_service, monitor):
        assert product_service.exists_by_name_and_manufacturer("Monitor 27", "Vision") is True
        assert product_service.exists_by_name_and_manufacturer("Monitor 27", "Other") is False

    def test_update_code_refreshes_lookups(self, product_service, monitor):
        assert product_service.exists_by_code("MON-27") is True

        product_service.update_code(monitor.pk, "MON-27B")

        assert product_service.exists_by_code("MON-27") is False
        assert product_service.find_by_code("MON-27B").pk == monitor.pk

    def test_delete_by_category(self, product_service, gadgets, monitor):
        assert product_service.delete_by_category(gadgets.pk) == 1
        assert product_service.find_by_category(gadgets.pk) == []


# ===========================================================================
# Price history
# ===========================================================================


class TestPriceHistoryService:
    def test_latest_and_oldest(self, price_service, monitor, history):
        assert price_service.find_latest_by_product(monitor.pk).price == Decimal("950.00")
        assert price_service.find_oldest_by_product(monitor.pk).price == Decimal("1000.00")

    def test_find_by_product_newest_first(self, price_service, monitor, history):
        dates = [entry.change_date for entry in price_service.find_by_product(monitor.pk)]
        assert dates == sorted(dates, reverse=True)

    def test_price_at_date(self, price_service, monitor, history):
        entry = price_service.find_price_at_date(monitor.pk, datetime.date(2024, 4, 15))
        assert entry.price == Decimal("1100.00")
        assert price_service.find_price_at_date(monitor.pk, datetime.date(2023, 12, 31)) is None

    @freeze_time("2024-04-15")
    def test_current_price(self, price_service, monitor, history):
        assert price_service.current_price(monitor.pk) == Decimal("1100.00")

    def test_current_price_without_history(self, price_service, monitor):
        assert price_service.current_price(monitor.pk) is None

    def test_min_max(self, price_service, monitor, history):
        assert price_service.max_price(monitor.pk) == Decimal("1100.00")
        assert price_service.min_price(monitor.pk) == Decimal("950.00")

    def test_trend_and_counts(self, price_service, monitor, history):
        trend = price_service.price_trend(monitor.pk, 2)
        assert [entry.price for entry in trend] == [Decimal("950.00"), Decimal("1100.00")]
        assert price_service.count_by_product(monitor.pk) == 3
        assert price_service.has_history(monitor.pk) is True

    def test_by_date_range(self, price_service, monitor, history):
        entries = price_service.find_by_date_range(datetime.date(2024, 2, 1), datetime.date(2024, 6, 1))
        assert [entry.price for entry in entries] == [Decimal("1100.00"), Decimal("950.00")]

    def test_inverted_date_range_rejected(self, price_service):
        with pytest.raises(InvalidPredicate):
            price_service.find_by_date_range(datetime.date(2024, 6, 1), datetime.date(2024, 1, 1))

    def test_price_between(self, price_service, monitor, history):
        entries = price_service.find_by_price_between(Decimal("900"), Decimal("1000"))
        assert [entry.price for entry in entries] == [Decimal("950.00"), Decimal("1000.00")]

    @freeze_time("2024-06-10")
    def test_recent_changes(self, price_service, monitor, history):
        assert [e.price for e in price_service.recent_changes(30)] == [Decimal("950.00")]

    def test_recent_changes_rejects_negative_days(self, price_service):
        with pytest.raises(InvalidPredicate):
            price_service.recent_changes(-1)

    def test_update_price_refreshes_aggregates(self, price_service, monitor, history):
        assert price_service.max_price(monitor.pk) == Decimal("1100.00")

        price_service.update_price(history[1].pk, Decimal("1200.00"))

        assert price_service.max_price(monitor.pk) == Decimal("1200.00")

    def test_update_prices_for_product(self, price_service, monitor, history):
        assert price_service.update_prices_for_product(monitor.pk, Decimal("999.00")) == 3
        assert price_service.min_price(monitor.pk) == Decimal("999.00")

    def test_delete_by_product(self, price_service, monitor, history):
        assert price_service.has_history(monitor.pk) is True
        assert price_service.delete_by_product(monitor.pk) == 3
        assert price_service.has_history(monitor.pk) is False

    def test_product_delete_clears_price_caches(self, price_service, product_service, monitor, history):
        assert price_service.count_by_product(monitor.pk) == 3

        product_service.delete_by_id(monitor.pk)

        assert price_service.count_by_product(monitor.pk) == 0
