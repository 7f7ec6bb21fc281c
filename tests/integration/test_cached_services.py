"""End-to-end behaviour of the cached services against database + LocMemCache.

Scenarios:
- renaming a category is visible through every cached read;
- pagination over 25 categories and the matching page counts;
- writes through one service clear the caches of dependent entities;
- writes behind the services' backs are picked up after a sweep;
- rows written inside a transaction reach the cache only once it commits.
"""

from __future__ import annotations

import math

import pytest
from django.db import transaction

from modules.catalog.models import Category, Product
from modules.catalog.services import CategoryService, ProductService
from modules.core.exceptions import NotFound
from modules.geography.services import RegionService

pytestmark = pytest.mark.integration


@pytest.fixture()
def category_service():
    return CategoryService()


@pytest.fixture()
def product_service():
    return ProductService()


@pytest.fixture()
def many_categories():
    return [Category.objects.create(name=f"Category {i:02d}") for i in range(25)]


# ===========================================================================
# Rename
# ===========================================================================


class TestRename:
    def test_rename_is_visible_everywhere(self, category_service):
        electronics = category_service.save(Category(name="Electronics"))

        assert category_service.find_by_id(electronics.pk).name == "Electronics"
        assert category_service.exists_by_name("Electronics") is True
        assert [c.name for c in category_service.find_by_name("Electronics")] == ["Electronics"]
        assert category_service.count_by_name_pattern("Elec") == 1

        assert category_service.update_name(electronics.pk, "Gadgets") == 1

        assert category_service.find_by_id(electronics.pk).name == "Gadgets"
        assert category_service.exists_by_name("Electronics") is False
        assert category_service.exists_by_name("Gadgets") is True
        assert category_service.find_by_name("Electronics") == []
        assert category_service.count_by_name_pattern("Elec") == 0
        assert [c.name for c in category_service.find_all_sorted_by_name()] == ["Gadgets"]

    def test_full_update(self, category_service):
        electronics = category_service.save(Category(name="Electronics"))
        category_service.find_by_id(electronics.pk)

        electronics.name = "Gadgets"
        category_service.update(electronics)

        assert category_service.get_by_id(electronics.pk).name == "Gadgets"

    def test_delete_then_get(self, category_service):
        electronics = category_service.save(Category(name="Electronics"))
        category_service.find_by_id(electronics.pk)
        assert category_service.count_all() == 1

        assert category_service.delete_by_id(electronics.pk) is True

        assert category_service.find_by_id(electronics.pk) is None
        assert category_service.exists_by_id(electronics.pk) is False
        assert category_service.count_all() == 0
        with pytest.raises(NotFound):
            category_service.get_by_id(electronics.pk)


# ===========================================================================
# Pagination
# ===========================================================================


class TestPagination:
    def test_pages_partition_the_sorted_list(self, category_service, many_categories):
        pages = [category_service.find_paginated(index, 10) for index in range(3)]

        assert [len(page) for page in pages] == [10, 10, 5]
        flattened = [c.name for page in pages for c in page]
        assert flattened == sorted(c.name for c in many_categories)

    def test_page_past_the_end_is_empty(self, category_service, many_categories):
        assert category_service.find_paginated(3, 10) == []

    @pytest.mark.parametrize("page_size", [1, 7, 10, 25, 100])
    def test_page_count_is_ceiling(self, category_service, many_categories, page_size):
        assert category_service.page_count(page_size) == math.ceil(25 / page_size)

    def test_page_count_by_name_pattern(self, category_service, many_categories):
        # "Category 1x" matches 10..19
        assert category_service.count_by_name_pattern("Category 1") == 10
        assert category_service.page_count_by_name_pattern("Category 1", 4) == 3

    def test_new_row_changes_page_count(self, category_service, many_categories):
        assert category_service.page_count(5) == 5
        category_service.save(Category(name="Category 25"))
        assert category_service.page_count(5) == 6

    def test_sorted_descending_with_paging(self, category_service, many_categories):
        page = category_service.find_paginated_sorted(0, 3, "name", "desc")
        assert [c.name for c in page] == ["Category 24", "Category 23", "Category 22"]

    def test_top_n(self, category_service, many_categories):
        assert [c.name for c in category_service.find_top_n(2)] == ["Category 00", "Category 01"]

    def test_starting_with_letter(self, category_service, many_categories):
        Category.objects.create(name="alpha")
        assert category_service.count_starting_with_letter("A") == 1
        assert [c.name for c in category_service.find_starting_with_letter("a")] == ["alpha"]


# ===========================================================================
# Cross-entity invalidation
# ===========================================================================


class TestCascades:
    def test_category_rename_refreshes_product_reads(self, category_service, product_service):
        electronics = category_service.save(Category(name="Electronics"))
        product = product_service.save(
            Product(code="E-1", name="Monitor", category=electronics, manufacturer="Vision")
        )
        assert product_service.find_by_id(product.pk).category.name == "Electronics"

        category_service.update_name(electronics.pk, "Gadgets")

        assert product_service.find_by_id(product.pk).category.name == "Gadgets"

    def test_category_delete_refreshes_product_counts(self, category_service, product_service):
        electronics = category_service.save(Category(name="Electronics"))
        product_service.save(
            Product(code="E-1", name="Monitor", category=electronics, manufacturer="Vision")
        )
        assert product_service.count_all() == 1

        category_service.delete_by_id(electronics.pk)

        assert product_service.count_all() == 0

    def test_bulk_delete_by_manufacturer(self, product_service):
        gadgets = Category.objects.create(name="Gadgets")
        for code in ("A", "B"):
            product_service.save(
                Product(code=code, name=code, category=gadgets, manufacturer="Acme")
            )
        assert product_service.count_by_manufacturer("Acme") == 2

        assert product_service.delete_by_manufacturer("Acme") == 2

        assert product_service.count_by_manufacturer("Acme") == 0
        assert product_service.find_by_code("A") is None


# ===========================================================================
# Out-of-band writes
# ===========================================================================


class TestSweep:
    def test_direct_write_visible_after_sweep(self, category_service):
        assert category_service.count_all() == 0
        Category.objects.create(name="Sneaked in")

        assert category_service.count_all() == 0

        category_service.sweep_caches()

        assert category_service.count_all() == 1


# ===========================================================================
# Transactions
# ===========================================================================


class TestTransactions:
    def test_rolled_back_row_is_not_served(self, category_service):
        with pytest.raises(RuntimeError):
            with transaction.atomic():
                phantom = category_service.save(Category(name="Phantom"))
                assert category_service.find_by_id(phantom.pk).name == "Phantom"
                assert category_service.count_all() == 1
                raise RuntimeError("abort")

        assert not Category.objects.filter(pk=phantom.pk).exists()
        assert category_service.find_by_id(phantom.pk) is None
        assert category_service.count_all() == 0

    def test_rolled_back_rename_is_not_served(self, category_service):
        electronics = Category.objects.create(name="Electronics")
        assert category_service.find_by_id(electronics.pk).name == "Electronics"

        with pytest.raises(RuntimeError):
            with transaction.atomic():
                category_service.update_name(electronics.pk, "Gadgets")
                assert category_service.find_by_id(electronics.pk).name == "Gadgets"
                raise RuntimeError("abort")

        assert category_service.find_by_id(electronics.pk).name == "Electronics"

    def test_uncommitted_write_keeps_reads_out_of_the_cache(
        self, category_service, product_service, result_cache
    ):
        electronics = category_service.save(Category(name="Electronics"))

        category_service.find_by_id(electronics.pk)
        product_service.count_all()

        assert result_cache.lookup("category-by-id", [electronics.pk]) is None
        assert result_cache.lookup("product-count-all", []) is None

    def test_other_entities_stay_cached(self, category_service, result_cache):
        category_service.save(Category(name="Electronics"))
        RegionService().count_all()

        assert result_cache.lookup("region-count-all", []) is not None

    def test_caching_resumes_after_commit(
        self, category_service, django_capture_on_commit_callbacks, django_assert_num_queries
    ):
        with django_capture_on_commit_callbacks(execute=True):
            electronics = category_service.save(Category(name="Electronics"))

        category_service.find_by_id(electronics.pk)
        with django_assert_num_queries(0):
            assert category_service.find_by_id(electronics.pk).name == "Electronics"
