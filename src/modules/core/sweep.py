"""Scheduled invalidation sweep.

Each entity app registers its service class here from ``AppConfig.ready``.
Celery beat schedules one periodic ``core.sweep_entity_caches`` task per
registered entity (see ``config.celery``); the task fully invalidates every
named cache the service declares.  A failing ``invalidate_all`` is logged
and recorded in the report, and the sweep carries on with the next cache.

Interval resolution, first match wins: the ``interval_seconds`` passed to
``register``, ``DATA_LAYER["SWEEP_INTERVALS"][entity]``, the service's
``sweep_interval`` and ``DATA_LAYER["DEFAULT_SWEEP_INTERVAL"]``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

import structlog
from django.conf import settings

from modules.core.cache import ResultCache
from modules.core.exceptions import CacheUnavailable

if TYPE_CHECKING:
    from modules.core.services import GenericService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SweepEntry:
    entity: str
    service_class: type[GenericService]
    interval_seconds: int

    @property
    def cache_names(self) -> tuple[str, ...]:
        return self.service_class.cache_names()


@dataclass
class SweepReport:
    entity: str
    cleared: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict:
        return {"entity": self.entity, "cleared": list(self.cleared), "failed": dict(self.failed)}


def invalidate_caches(
    entity: str, cache_names: Iterable[str], cache: ResultCache | None = None
) -> SweepReport:
    """Fully invalidate each named cache, continuing past failures."""
    cache = cache or ResultCache()
    report = SweepReport(entity=entity)
    for name in cache_names:
        try:
            cache.invalidate_all(name)
        except CacheUnavailable as exc:
            logger.error("sweep.cache_failed", entity=entity, cache=name, error=str(exc))
            report.failed[name] = str(exc)
        else:
            report.cleared.append(name)
    logger.info(
        "sweep.completed",
        entity=entity,
        cleared=len(report.cleared),
        failed=len(report.failed),
    )
    return report


class SweepRegistry:
    """Entity prefix -> (service class, interval) registry."""

    def __init__(self) -> None:
        self._entries: dict[str, SweepEntry] = {}
        self._lock = threading.Lock()

    def register(
        self, service_class: type[GenericService], interval_seconds: int | None = None
    ) -> SweepEntry:
        entity = service_class.entity_name
        if not entity:
            raise ValueError(f"{service_class.__name__} has no entity_name.")
        conf = settings.DATA_LAYER
        interval = (
            interval_seconds
            or conf["SWEEP_INTERVALS"].get(entity)
            or service_class.sweep_interval
            or conf["DEFAULT_SWEEP_INTERVAL"]
        )
        entry = SweepEntry(entity=entity, service_class=service_class, interval_seconds=interval)
        with self._lock:
            self._entries[entity] = entry
        logger.debug("sweep.registered", entity=entity, interval=interval)
        return entry

    def unregister(self, entity: str) -> None:
        with self._lock:
            self._entries.pop(entity, None)

    def get(self, entity: str) -> SweepEntry:
        try:
            return self._entries[entity]
        except KeyError:
            raise LookupError(f"No cache sweep registered for {entity!r}.") from None

    def entries(self) -> list[SweepEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.entity)

    def cache_names(self, entity: str) -> tuple[str, ...]:
        entry = self._entries.get(entity)
        return entry.cache_names if entry else ()

    def sweep(self, entity: str, cache: ResultCache | None = None) -> SweepReport:
        entry = self.get(entity)
        return invalidate_caches(entity, entry.cache_names, cache)

    def sweep_all(self, cache: ResultCache | None = None) -> list[SweepReport]:
        cache = cache or ResultCache()
        return [self.sweep(entry.entity, cache) for entry in self.entries()]


sweep_registry = SweepRegistry()
