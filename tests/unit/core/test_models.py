"""Unit tests for BaseModel timestamps, NamedModel and MigrationTag."""

from __future__ import annotations

import pytest
from django.db import IntegrityError, transaction

from modules.catalog.models import Category
from modules.core.models import MigrationTag, snapshot_checksum

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# BaseModel / NamedModel (exercised through Category)
# ---------------------------------------------------------------------------


class TestBaseModel:
    def test_id_is_auto_increment(self):
        a = Category.objects.create(name="a")
        b = Category.objects.create(name="b")
        assert isinstance(a.id, int)
        assert b.id > a.id

    def test_timestamps_set_on_create(self):
        obj = Category.objects.create(name="test")
        assert obj.created_at is not None
        assert obj.updated_at is not None

    def test_created_at_does_not_change_on_save(self):
        obj = Category.objects.create(name="original")
        original_created = obj.created_at
        obj.name = "modified"
        obj.save()
        obj.refresh_from_db()
        assert obj.created_at == original_created

    def test_save_with_update_fields_includes_updated_at(self):
        """The save() guard must inject updated_at into update_fields."""
        obj = Category.objects.create(name="original")
        original_updated = obj.updated_at
        obj.name = "modified"
        obj.save(update_fields=["name"])
        obj.refresh_from_db()
        assert obj.updated_at >= original_updated
        assert obj.name == "modified"

    def test_name_is_unique(self):
        Category.objects.create(name="Electronics")
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Category.objects.create(name="Electronics")

    def test_str_is_name(self):
        assert str(Category(name="Electronics")) == "Electronics"


# ---------------------------------------------------------------------------
# MigrationTag
# ---------------------------------------------------------------------------


class TestMigrationTag:
    def test_checksum_is_order_independent(self):
        assert snapshot_checksum({"a": "1", "b": None}) == snapshot_checksum({"b": None, "a": "1"})

    def test_checksum_matches(self):
        snapshot = {"catalog": "0001_initial"}
        tag = MigrationTag(name="v1", snapshot=snapshot, checksum=snapshot_checksum(snapshot))
        assert tag.checksum_matches()

    def test_tampered_snapshot_does_not_match(self):
        tag = MigrationTag(
            name="v1",
            snapshot={"catalog": "0002_other"},
            checksum=snapshot_checksum({"catalog": "0001_initial"}),
        )
        assert not tag.checksum_matches()

    def test_blank_checksum_matches(self):
        assert MigrationTag(name="v1", snapshot={"core": None}).checksum_matches()

    def test_newest_first(self):
        MigrationTag.objects.create(name="first")
        MigrationTag.objects.create(name="second")
        assert [tag.name for tag in MigrationTag.objects.all()] == ["second", "first"]
