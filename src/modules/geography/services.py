"""Region and settlement services."""

from __future__ import annotations

from typing import List, Optional

from modules.core.services import GenericService
from modules.geography.models import Region, Settlement
from modules.geography.repositories.django_repository import (
    RegionDjangoRepository,
    SettlementDjangoRepository,
)

# ---------------------------------------------------------------------------
# Region
# ---------------------------------------------------------------------------

BY_COUNTRY = "by-country"
COUNT_BY_COUNTRY = "count-by-country"
REGION_SEARCH = "search"
DISTINCT_COUNTRIES = "distinct-countries"
EXISTS_BY_NAME_COUNTRY = "exists-by-name-country"


class RegionService(GenericService[Region, int]):
    entity_name = "region"
    repository_class = RegionDjangoRepository
    domain_caches = (
        BY_COUNTRY,
        COUNT_BY_COUNTRY,
        REGION_SEARCH,
        DISTINCT_COUNTRIES,
        EXISTS_BY_NAME_COUNTRY,
    )
    cascades_to = ("settlement", "invoice")

    def find_by_country(self, country: str) -> List[Region]:
        descriptor = self._repo.query().equals("country", country).build()
        return self._cached(BY_COUNTRY, (country,), lambda: self._repo.find_by_predicate(descriptor))

    def count_by_country(self, country: str) -> int:
        descriptor = self._repo.query().equals("country", country).build()
        return self._cached(COUNT_BY_COUNTRY, (country,), lambda: self._repo.count(descriptor))

    def search(
        self,
        term: str,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Region]:
        """Regions whose name or country contains ``term`` (any case)."""
        builder = (
            self._repo.query()
            .contains("name", term, ignore_case=True)
            .contains("country", term, ignore_case=True)
            .match_any()
        )
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            REGION_SEARCH,
            (term, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def distinct_countries(self) -> List[str]:
        descriptor = self._repo.query().build()
        return self._cached(
            DISTINCT_COUNTRIES, (), lambda: self._repo.distinct_values(descriptor, "country")
        )

    def exists_by_name_and_country(self, name: str, country: str) -> bool:
        descriptor = self._repo.query().equals("name", name).equals("country", country).build()
        return self._cached(
            EXISTS_BY_NAME_COUNTRY, (name, country), lambda: self._repo.exists(descriptor)
        )

    def update_country(self, id: int, country: str) -> int:
        return self.update_field(id, "country", country)

    def rename_country(self, old_country: str, new_country: str) -> int:
        """Move every region of ``old_country`` to ``new_country``."""
        descriptor = self._repo.query().equals("country", old_country).build()
        return self._bulk_update("rename_country", descriptor, {"country": new_country})

    def delete_by_country(self, country: str) -> int:
        descriptor = self._repo.query().equals("country", country).build()
        return self._bulk_delete("delete_by_country", descriptor)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

BY_REGION = "by-region"
COUNT_BY_REGION = "count-by-region"
SETTLEMENT_SEARCH = "search"
EXISTS_BY_NAME_REGION = "exists-by-name-region"


class SettlementService(GenericService[Settlement, int]):
    entity_name = "settlement"
    repository_class = SettlementDjangoRepository
    domain_caches = (BY_REGION, COUNT_BY_REGION, SETTLEMENT_SEARCH, EXISTS_BY_NAME_REGION)
    cascades_to = ("invoice",)

    def find_by_region(self, region_id: int) -> List[Settlement]:
        region_id = self._normalize_id(region_id)
        descriptor = self._repo.query().equals("region", region_id).build()
        return self._cached(BY_REGION, (region_id,), lambda: self._repo.find_by_predicate(descriptor))

    def count_by_region(self, region_id: int) -> int:
        region_id = self._normalize_id(region_id)
        descriptor = self._repo.query().equals("region", region_id).build()
        return self._cached(COUNT_BY_REGION, (region_id,), lambda: self._repo.count(descriptor))

    def search(
        self,
        term: str,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Settlement]:
        """Settlements whose own or region name contains ``term`` (any case)."""
        builder = (
            self._repo.query()
            .contains("name", term, ignore_case=True)
            .contains("region__name", term, ignore_case=True)
            .match_any()
        )
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            SETTLEMENT_SEARCH,
            (term, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def exists_by_name_and_region(self, name: str, region_id: int) -> bool:
        region_id = self._normalize_id(region_id)
        descriptor = self._repo.query().equals("name", name).equals("region", region_id).build()
        return self._cached(
            EXISTS_BY_NAME_REGION, (name, region_id), lambda: self._repo.exists(descriptor)
        )

    def move_to_region(self, id: int, region_id: int) -> int:
        return self.update_field(id, "region_id", self._normalize_id(region_id))

    def transfer_region(self, from_region_id: int, to_region_id: int) -> int:
        """Move every settlement of one region to another."""
        descriptor = self._repo.query().equals("region", self._normalize_id(from_region_id)).build()
        return self._bulk_update(
            "transfer_region", descriptor, {"region_id": self._normalize_id(to_region_id)}
        )

    def delete_by_region(self, region_id: int) -> int:
        descriptor = self._repo.query().equals("region", self._normalize_id(region_id)).build()
        return self._bulk_delete("delete_by_region", descriptor)
