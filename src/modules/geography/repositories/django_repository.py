"""Django ORM repositories of the geography module."""

from __future__ import annotations

from modules.core.repositories.django_repository import DjangoRepository
from modules.geography.models import Region, Settlement


class RegionDjangoRepository(DjangoRepository[Region, int]):
    model = Region
    entity_name = "region"
    queryable_fields = ("name", "country", "created_at", "updated_at")


class SettlementDjangoRepository(DjangoRepository[Settlement, int]):
    model = Settlement
    entity_name = "settlement"
    queryable_fields = (
        "name",
        "region",
        "region__name",
        "region__country",
        "created_at",
        "updated_at",
    )
    related = ("region",)
