"""Django ORM repositories of the catalog module."""

from __future__ import annotations

from modules.catalog.models import Category, PriceHistory, Product
from modules.core.repositories.django_repository import DjangoRepository


class CategoryDjangoRepository(DjangoRepository[Category, int]):
    model = Category
    entity_name = "category"
    queryable_fields = ("name", "created_at", "updated_at")


class ProductDjangoRepository(DjangoRepository[Product, int]):
    model = Product
    entity_name = "product"
    queryable_fields = (
        "code",
        "name",
        "manufacturer",
        "category",
        "category__name",
        "created_at",
        "updated_at",
    )
    related = ("category",)


class PriceHistoryDjangoRepository(DjangoRepository[PriceHistory, int]):
    model = PriceHistory
    entity_name = "price-history"
    queryable_fields = ("product", "product__code", "change_date", "price", "created_at")
    default_sort_field = "change_date"
    related = ("product",)
