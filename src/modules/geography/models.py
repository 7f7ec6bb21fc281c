from __future__ import annotations

from django.db import models

from modules.core.models import NamedModel


class Region(NamedModel):
    country = models.CharField(max_length=100)

    class Meta:
        db_table = "regions"
        ordering = ["name"]
        indexes = [models.Index(fields=["country"], name="regions_country_idx")]


class Settlement(NamedModel):
    region = models.ForeignKey(
        Region,
        on_delete=models.CASCADE,
        related_name="settlements",
    )

    class Meta:
        db_table = "settlements"
        ordering = ["name"]
