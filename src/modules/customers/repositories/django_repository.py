"""Django ORM repository of the Customer entity."""

from __future__ import annotations

from modules.core.repositories.django_repository import DjangoRepository
from modules.customers.models import Customer


class CustomerDjangoRepository(DjangoRepository[Customer, int]):
    model = Customer
    entity_name = "customer"
    queryable_fields = (
        "name",
        "address",
        "is_legal_entity",
        "document_series",
        "document_number",
        "bank_name",
        "bank_account",
        "created_at",
        "updated_at",
    )
