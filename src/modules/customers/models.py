"""Customer model.

A customer is either a legal entity or an individual.  Identity documents
are stored as series + number; bank details are optional.  ``bank_account``
is masked in ``__str__`` and, through the structlog processor, in logs.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel


class Customer(BaseModel):
    name = models.CharField(max_length=200)
    address = models.CharField(max_length=300, blank=True, default="")
    is_legal_entity = models.BooleanField(default=False)
    document_series = models.CharField(max_length=50, blank=True, null=True)  # noqa: DJ01
    document_number = models.CharField(max_length=100, blank=True, null=True)  # noqa: DJ01
    bank_name = models.CharField(max_length=200, blank=True, null=True)  # noqa: DJ01
    bank_account = models.CharField(max_length=100, blank=True, null=True)  # noqa: DJ01

    class Meta:
        db_table = "customers"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="customers_name_idx"),
            models.Index(fields=["is_legal_entity"], name="customers_legal_idx"),
            models.Index(
                fields=["document_series", "document_number"],
                name="customers_document_idx",
            ),
        ]

    @property
    def masked_bank_account(self) -> str:
        if not self.bank_account:
            return ""
        return f"***{self.bank_account[-4:]}"

    def __str__(self) -> str:
        kind = "legal entity" if self.is_legal_entity else "individual"
        return f"{self.name} ({kind})"
