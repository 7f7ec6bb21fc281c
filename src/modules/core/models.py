"""Base abstract models and data-layer bookkeeping tables.

Provides:
- ``BaseModel``: auto-increment primary key + created_at / updated_at timestamps.
- ``NamedModel``: BaseModel with the ``name`` attribute the generic service
  builds its name-based convenience operations on.
- ``MigrationTag``: named snapshot of the applied-migration state, used by
  the migration runner to roll back to a tag.
"""

from __future__ import annotations

import hashlib
import json

from django.db import models

# ---------------------------------------------------------------------------
# BaseModel
# ---------------------------------------------------------------------------


class BaseModel(models.Model):
    """Abstract base with timestamp bookkeeping."""

    id = models.BigAutoField(primary_key=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs) -> None:
        """Ensure ``updated_at`` is refreshed even when ``update_fields`` is passed."""
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)


class NamedModel(BaseModel):
    name = models.CharField(max_length=255, unique=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


# ---------------------------------------------------------------------------
# Migration tags
# ---------------------------------------------------------------------------


def snapshot_checksum(snapshot: dict) -> str:
    payload = json.dumps(snapshot, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class MigrationTag(models.Model):
    """Applied-migration state captured under a name.

    ``snapshot`` maps each app label to the name of its last applied
    migration (``None`` when nothing was applied).  ``checksum`` is the
    SHA-256 of the snapshot; a blank checksum is re-computed by the next
    validation.
    """

    name = models.CharField(max_length=100, unique=True)
    snapshot = models.JSONField(default=dict)
    checksum = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "data_layer_migration_tags"
        ordering = ["-created_at", "-id"]

    def computed_checksum(self) -> str:
        return snapshot_checksum(self.snapshot)

    def checksum_matches(self) -> bool:
        return not self.checksum or self.checksum == self.computed_checksum()

    def __str__(self) -> str:
        return self.name
