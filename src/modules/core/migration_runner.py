"""Schema migration runner.

``MigrationRunner`` is the contract the data layer consumes; the Django
implementation drives ``manage.py migrate`` and reads state from the
migration loader and recorder.

- *contexts* is a comma-separated list of app labels; empty means every
  app with migrations.
- *labels* is a comma-separated list of substrings matched against
  migration names; it narrows status listings and the target of ``apply``.
- Tags (``MigrationTag``) snapshot the last applied migration of every app
  so the schema can later be rolled back to that point.

``MigrationService`` wraps a runner, renders human-readable results and
turns every failure into a single-message ``MigrationError``.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import structlog
from django.core.management import call_command
from django.db import DEFAULT_DB_ALIAS, IntegrityError, connections, transaction
from django.db.migrations.exceptions import InconsistentMigrationHistory
from django.db.migrations.loader import MigrationLoader
from django.db.migrations.recorder import MigrationRecorder
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from modules.core.exceptions import MigrationError
from modules.core.models import MigrationTag, snapshot_checksum

logger = structlog.get_logger(__name__)

MigrationKey = tuple[str, str]


def _split(value: Optional[str | Iterable[str]]) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [part.strip() for part in value if part and part.strip()]


def _format(keys: Iterable[MigrationKey]) -> list[str]:
    return [f"{app}.{name}" for app, name in keys]


class MigrationRunner(ABC):
    """Contract of the schema migration collaborator."""

    @abstractmethod
    def apply(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> list[str]:
        """Apply pending migrations; returns the ones applied."""

    @abstractmethod
    def rollback_count(
        self, count: int, contexts: Optional[str] = None, labels: Optional[str] = None
    ) -> list[str]:
        """Unapply the ``count`` most recently applied migrations."""

    @abstractmethod
    def rollback_to_tag(
        self, tag: str, contexts: Optional[str] = None, labels: Optional[str] = None
    ) -> list[str]:
        """Return the schema to the state captured by ``tag``."""

    @abstractmethod
    def rollback_to_date(
        self,
        date: datetime.datetime,
        contexts: Optional[str] = None,
        labels: Optional[str] = None,
    ) -> list[str]:
        """Unapply every migration applied after ``date``."""

    @abstractmethod
    def status(
        self, contexts: Optional[str] = None, labels: Optional[str] = None
    ) -> dict[str, list[str]]:
        """``{"applied": [...], "pending": [...]}``."""

    @abstractmethod
    def validate(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> list[str]:
        """Problems found in the migration history; empty when valid."""

    @abstractmethod
    def tag(self, name: str) -> MigrationTag:
        """Snapshot the current applied state under ``name``."""

    @abstractmethod
    def clear_checksums(self) -> int:
        """Blank every stored tag checksum; returns how many were cleared."""

    @abstractmethod
    def applied(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> list[str]:
        """Applied migrations in dependency order."""


class DjangoMigrationRunner(MigrationRunner):
    def __init__(self, database: str = DEFAULT_DB_ALIAS) -> None:
        self.database = database

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _loader(self) -> MigrationLoader:
        return MigrationLoader(connections[self.database], ignore_no_migrations=True)

    def _scope(self, loader: MigrationLoader, contexts: Optional[str]) -> list[str]:
        known = sorted(loader.migrated_apps)
        requested = _split(contexts)
        unknown = [app for app in requested if app not in known]
        if unknown:
            raise MigrationError(f"Unknown migration context(s): {', '.join(unknown)}.")
        return requested or known

    @staticmethod
    def _plan(loader: MigrationLoader, app: str) -> list[MigrationKey]:
        plan: list[MigrationKey] = []
        for leaf in loader.graph.leaf_nodes(app):
            for key in loader.graph.forwards_plan(leaf):
                if key[0] == app and key not in plan:
                    plan.append(key)
        return plan

    @staticmethod
    def _matches(key: MigrationKey, labels: list[str]) -> bool:
        return not labels or any(label in key[1] for label in labels)

    @staticmethod
    def _previous(loader: MigrationLoader, key: MigrationKey) -> str:
        parents = sorted(p.key[1] for p in loader.graph.node_map[key].parents if p.key[0] == key[0])
        return parents[-1] if parents else "zero"

    def _partition(
        self, contexts: Optional[str], labels: Optional[str]
    ) -> tuple[list[MigrationKey], list[MigrationKey]]:
        loader = self._loader()
        wanted = _split(labels)
        applied: list[MigrationKey] = []
        pending: list[MigrationKey] = []
        for app in self._scope(loader, contexts):
            for key in self._plan(loader, app):
                if not self._matches(key, wanted):
                    continue
                (applied if key in loader.applied_migrations else pending).append(key)
        return applied, pending

    def _migrate(self, app: str, target: Optional[str] = None) -> None:
        args = [app] if target is None else [app, target]
        logger.info("migration.migrate", app=app, target=target or "latest")
        call_command("migrate", *args, interactive=False, verbosity=0, database=self.database)

    def _applied_set(self) -> set[MigrationKey]:
        return set(self._loader().applied_migrations)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def apply(self, contexts=None, labels=None) -> list[str]:
        before = self._applied_set()
        _, pending = self._partition(contexts, labels)
        targets: dict[str, str] = {}
        for app, name in pending:
            targets[app] = name
        for app, name in targets.items():
            self._migrate(app, name if labels else None)
        applied = sorted(self._applied_set() - before)
        logger.info("migration.applied", count=len(applied))
        return _format(applied)

    def rollback_count(self, count, contexts=None, labels=None) -> list[str]:
        if count < 1:
            raise MigrationError("Rollback count must be at least 1.")
        loader = self._loader()
        scope = set(self._scope(loader, contexts))
        wanted = _split(labels)
        recorded = MigrationRecorder.Migration.objects.using(self.database).order_by("-applied", "-id")
        latest = [
            (row.app, row.name)
            for row in recorded
            if row.app in scope
            and (row.app, row.name) in loader.graph.nodes
            and self._matches((row.app, row.name), wanted)
        ][:count]
        return self._unapply(latest)

    def rollback_to_tag(self, tag, contexts=None, labels=None) -> list[str]:
        try:
            stored = MigrationTag.objects.using(self.database).get(name=tag)
        except MigrationTag.DoesNotExist:
            raise MigrationError(f"Unknown tag {tag!r}.") from None
        if not stored.checksum_matches():
            raise MigrationError(f"Checksum of tag {tag!r} does not match its snapshot.")
        loader = self._loader()
        before = self._applied_set()
        for app in self._scope(loader, contexts):
            if app not in stored.snapshot:
                continue
            target = stored.snapshot[app] or "zero"
            applied = [key for key in self._plan(loader, app) if key in loader.applied_migrations]
            current = applied[-1][1] if applied else "zero"
            if current != target:
                self._migrate(app, target)
        removed = sorted(before - self._applied_set())
        logger.info("migration.rolled_back", tag=tag, count=len(removed))
        return _format(removed)

    def rollback_to_date(self, date, contexts=None, labels=None) -> list[str]:
        loader = self._loader()
        scope = set(self._scope(loader, contexts))
        wanted = _split(labels)
        recorded = MigrationRecorder.Migration.objects.using(self.database).filter(applied__gt=date)
        later = [
            (row.app, row.name)
            for row in recorded.order_by("-applied", "-id")
            if row.app in scope
            and (row.app, row.name) in loader.graph.nodes
            and self._matches((row.app, row.name), wanted)
        ]
        return self._unapply(later)

    def _unapply(self, keys: list[MigrationKey]) -> list[str]:
        """Migrate each app back to just before its earliest key in ``keys``."""
        if not keys:
            return []
        loader = self._loader()
        before = self._applied_set()
        earliest: dict[str, MigrationKey] = {}
        for app in sorted({app for app, _ in keys}):
            plan = self._plan(loader, app)
            earliest[app] = min((key for key in keys if key[0] == app), key=plan.index)
        for app, key in earliest.items():
            if key in self._applied_set():
                self._migrate(app, self._previous(loader, key))
        removed = sorted(before - self._applied_set())
        logger.info("migration.rolled_back", count=len(removed))
        return _format(removed)

    def status(self, contexts=None, labels=None) -> dict[str, list[str]]:
        applied, pending = self._partition(contexts, labels)
        return {"applied": _format(applied), "pending": _format(pending)}

    def applied(self, contexts=None, labels=None) -> list[str]:
        applied, _ = self._partition(contexts, labels)
        return _format(applied)

    def validate(self, contexts=None, labels=None) -> list[str]:
        loader = self._loader()
        scope = set(self._scope(loader, contexts))
        problems: list[str] = []
        try:
            loader.check_consistent_history(connections[self.database])
        except InconsistentMigrationHistory as exc:
            problems.append(str(exc))
        for app, names in sorted(loader.detect_conflicts().items()):
            if app in scope:
                problems.append(f"Conflicting leaf migrations in {app}: {', '.join(sorted(names))}.")
        for stored in MigrationTag.objects.using(self.database).all():
            if not stored.checksum:
                stored.checksum = stored.computed_checksum()
                stored.save(update_fields=["checksum"])
                logger.info("migration.tag_rebaselined", tag=stored.name)
            elif not stored.checksum_matches():
                problems.append(f"Checksum of tag {stored.name!r} does not match its snapshot.")
            for app, name in stored.snapshot.items():
                if app in scope and name and (app, name) not in loader.graph.nodes:
                    problems.append(f"Tag {stored.name!r} references unknown migration {app}.{name}.")
        return problems

    def tag(self, name: str) -> MigrationTag:
        if not name or not name.strip():
            raise MigrationError("Tag name must not be empty.")
        loader = self._loader()
        snapshot: dict[str, Any] = {}
        for app in sorted(loader.migrated_apps):
            applied = [key for key in self._plan(loader, app) if key in loader.applied_migrations]
            snapshot[app] = applied[-1][1] if applied else None
        try:
            with transaction.atomic(using=self.database):
                stored = MigrationTag.objects.using(self.database).create(
                    name=name.strip(), snapshot=snapshot, checksum=snapshot_checksum(snapshot)
                )
        except IntegrityError:
            raise MigrationError(f"Tag {name!r} already exists.") from None
        logger.info("migration.tagged", tag=stored.name)
        return stored

    def clear_checksums(self) -> int:
        cleared = MigrationTag.objects.using(self.database).exclude(checksum="").update(checksum="")
        logger.info("migration.checksums_cleared", count=cleared)
        return cleared


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def _parse_when(value: datetime.datetime | datetime.date | str) -> datetime.datetime:
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                raise MigrationError(f"Invalid rollback date {value!r}.")
            parsed = datetime.datetime.combine(day, datetime.time.min)
        value = parsed
    elif not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time.min)
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


class MigrationService:
    """Human-facing wrapper around a ``MigrationRunner``."""

    def __init__(self, runner: MigrationRunner | None = None) -> None:
        self._runner = runner or DjangoMigrationRunner()

    def _call(self, operation: str, call, **context):
        log = logger.bind(operation=operation, **context)
        try:
            return call()
        except MigrationError as exc:
            log.error("migration.failed", error=str(exc))
            raise
        except Exception as exc:
            log.error("migration.failed", error=str(exc))
            raise MigrationError(f"Migration {operation} failed: {exc}") from exc

    def apply(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> str:
        applied = self._call(
            "apply", lambda: self._runner.apply(contexts, labels), contexts=contexts, labels=labels
        )
        if not applied:
            return "Database is up to date."
        return f"Applied {len(applied)} migration(s): {', '.join(applied)}."

    def rollback(
        self,
        count: Optional[int] = None,
        tag: Optional[str] = None,
        date: datetime.datetime | datetime.date | str | None = None,
        contexts: Optional[str] = None,
        labels: Optional[str] = None,
    ) -> str:
        chosen = [arg for arg in (count, tag, date) if arg is not None]
        if len(chosen) != 1:
            raise MigrationError("Rollback needs exactly one of count, tag or date.")
        if count is not None:
            removed = self._call(
                "rollback",
                lambda: self._runner.rollback_count(count, contexts, labels),
                count=count,
            )
        elif tag is not None:
            removed = self._call(
                "rollback", lambda: self._runner.rollback_to_tag(tag, contexts, labels), tag=tag
            )
        else:
            when = _parse_when(date)
            removed = self._call(
                "rollback",
                lambda: self._runner.rollback_to_date(when, contexts, labels),
                date=when.isoformat(),
            )
        if not removed:
            return "Nothing to roll back."
        return f"Rolled back {len(removed)} migration(s): {', '.join(removed)}."

    def status(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> dict[str, list[str]]:
        return self._call("status", lambda: self._runner.status(contexts, labels))

    def applied(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> list[str]:
        return self._call("applied", lambda: self._runner.applied(contexts, labels))

    def validate(self, contexts: Optional[str] = None, labels: Optional[str] = None) -> str:
        problems = self._call("validate", lambda: self._runner.validate(contexts, labels))
        if problems:
            logger.warning("migration.validation_failed", problems=problems)
            raise MigrationError("Validation failed: " + " ".join(problems))
        return "Validation passed."

    def tag(self, name: str) -> str:
        stored = self._call("tag", lambda: self._runner.tag(name), tag=name)
        return f"Tagged current state as {stored.name!r}."

    def clear_checksums(self) -> str:
        cleared = self._call("clear_checksums", self._runner.clear_checksums)
        return f"Cleared checksums of {cleared} tag(s)."
