"""Customer service layer.

Adds legal-status, document and bank look-ups to the cached generic
operations.  A document is identified by series + number; a legal entity
"has a bank account" when both bank fields are filled in.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from modules.core.services import GenericService
from modules.customers.models import Customer
from modules.customers.repositories.django_repository import CustomerDjangoRepository

logger = structlog.get_logger(__name__)

BY_LEGAL_STATUS = "by-legal-status"
COUNT_BY_LEGAL_STATUS = "count-by-legal-status"
BY_BANK_NAME = "by-bank-name"
BY_DOCUMENT = "by-document"
EXISTS_BY_DOCUMENT = "exists-by-document"
LEGAL_ENTITIES_WITH_BANK = "legal-entities-with-bank"
INDIVIDUALS_WITH_DOCS = "individuals-with-docs"


class CustomerService(GenericService[Customer, int]):
    entity_name = "customer"
    repository_class = CustomerDjangoRepository
    domain_caches = (
        BY_LEGAL_STATUS,
        COUNT_BY_LEGAL_STATUS,
        BY_BANK_NAME,
        BY_DOCUMENT,
        EXISTS_BY_DOCUMENT,
        LEGAL_ENTITIES_WITH_BANK,
        INDIVIDUALS_WITH_DOCS,
    )
    cascades_to = ("invoice",)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_legal_status(
        self,
        is_legal_entity: bool,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[Customer]:
        builder = self._repo.query().equals("is_legal_entity", bool(is_legal_entity))
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            BY_LEGAL_STATUS,
            (bool(is_legal_entity), page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def count_by_legal_status(self, is_legal_entity: bool) -> int:
        descriptor = self._repo.query().equals("is_legal_entity", bool(is_legal_entity)).build()
        return self._cached(
            COUNT_BY_LEGAL_STATUS,
            (bool(is_legal_entity),),
            lambda: self._repo.count(descriptor),
        )

    def find_by_bank_name(self, bank_name: str) -> List[Customer]:
        descriptor = self._repo.query().equals("bank_name", bank_name).build()
        return self._cached(
            BY_BANK_NAME, (bank_name,), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_by_document(self, series: str, number: str) -> List[Customer]:
        descriptor = self._document(series, number)
        return self._cached(
            BY_DOCUMENT, (series, number), lambda: self._repo.find_by_predicate(descriptor)
        )

    def exists_by_document(self, series: str, number: str) -> bool:
        descriptor = self._document(series, number)
        return self._cached(
            EXISTS_BY_DOCUMENT, (series, number), lambda: self._repo.exists(descriptor)
        )

    def find_legal_entities_with_bank_accounts(self) -> List[Customer]:
        descriptor = (
            self._repo.query()
            .equals("is_legal_entity", True)
            .is_not_blank("bank_name")
            .is_not_blank("bank_account")
            .build()
        )
        return self._cached(
            LEGAL_ENTITIES_WITH_BANK, (), lambda: self._repo.find_by_predicate(descriptor)
        )

    def find_individuals_with_documents(self) -> List[Customer]:
        descriptor = (
            self._repo.query()
            .equals("is_legal_entity", False)
            .is_not_blank("document_number")
            .build()
        )
        return self._cached(
            INDIVIDUALS_WITH_DOCS, (), lambda: self._repo.find_by_predicate(descriptor)
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def update_address(self, id: int, address: str) -> int:
        return self.update_field(id, "address", address)

    def update_bank_details(self, id: int, bank_name: str, bank_account: str) -> int:
        affected = self.update_fields(id, {"bank_name": bank_name, "bank_account": bank_account})
        logger.info("customer.bank_details_updated", customer_id=id, affected=affected)
        return affected

    def assign_bank_to_legal_entities(self, bank_name: str) -> int:
        """Set ``bank_name`` on every legal entity; returns how many changed."""
        descriptor = self._repo.query().equals("is_legal_entity", True).build()
        return self._bulk_update(
            "assign_bank_to_legal_entities", descriptor, {"bank_name": bank_name}
        )

    def _document(self, series: str, number: str):
        return (
            self._repo.query()
            .equals("document_series", series)
            .equals("document_number", number)
            .build()
        )
