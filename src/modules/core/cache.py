"""Result cache: named, keyed caches on top of the Django cache framework.

A named cache (``category-by-id``, ``invoice-count-all``...) is a set of
entries sharing a name. Each entry is stored under::

    <prefix>:<cache name>:<generation>:<version>:<sha256 of the canonical arguments>

Full invalidation bumps the per-name generation counter instead of
enumerating keys, which the Django cache API cannot do. Point invalidation
bumps the version counter of that one key. Entries written under an older
generation or version become unreachable and age out through the backend
timeout. A compute is always stored under the generation and version
observed before it started, so a value computed across an ``invalidate``
or ``invalidate_all`` is never served.

Within one process at most one compute per key is in flight; concurrent
callers for the same key wait for it and then read the stored result. A
compute that raises (or is interrupted) stores nothing, and waiting callers
retry as an ordinary miss.
"""

from __future__ import annotations

import dataclasses
import datetime
import decimal
import enum
import hashlib
import json
import threading
import time
import uuid
from typing import Any, Callable, Iterable, TypeVar

import structlog
from django.conf import settings
from django.core.cache import caches
from django.db import models
from django.utils import timezone
from pydantic import BaseModel

from modules.core.exceptions import CacheUnavailable

logger = structlog.get_logger(__name__)

V = TypeVar("V")

_UNSET = object()


@dataclasses.dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    inserted_at: datetime.datetime


# ---------------------------------------------------------------------------
# Key canonicalisation
# ---------------------------------------------------------------------------


def _canonical(value: Any) -> Any:
    """``json.dumps`` hook for argument types JSON cannot encode natively."""
    if isinstance(value, decimal.Decimal):
        return {"decimal": str(value.normalize())}
    if isinstance(value, datetime.datetime):
        return {"datetime": value.isoformat()}
    if isinstance(value, datetime.date):
        return {"date": value.isoformat()}
    if isinstance(value, uuid.UUID):
        return {"uuid": str(value)}
    if isinstance(value, enum.Enum):
        return {"enum": f"{type(value).__name__}.{value.name}"}
    if isinstance(value, models.Model):
        return {"model": value._meta.label, "pk": value.pk}
    if isinstance(value, BaseModel):
        return {"value": type(value).__name__, "data": value.model_dump(mode="json")}
    if isinstance(value, (set, frozenset)):
        return {"set": sorted(canonical_arguments([item]) for item in value)}
    raise TypeError(f"Cannot derive a cache key from {type(value).__name__}.")


def canonical_arguments(args: Iterable[Any]) -> str:
    """Deterministic JSON text for an ordered argument list."""
    return json.dumps(
        list(args),
        default=_canonical,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def make_cache_key(cache_name: str, args: Iterable[Any]) -> str:
    """Key of one call: cache name plus the SHA-256 of its canonical arguments.

    Identical calls always map to the same key; distinct calls collide only
    with SHA-256 collision probability.
    """
    digest = hashlib.sha256(canonical_arguments(args).encode("utf-8")).hexdigest()
    return f"{cache_name}:{digest}"


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------


class ResultCache:
    """Get-or-compute cache with point and whole-cache invalidation."""

    _in_flight: dict[str, threading.Event] = {}
    _in_flight_lock = threading.Lock()

    def __init__(
        self,
        alias: str | None = None,
        key_prefix: str | None = None,
        entry_timeout: Any = _UNSET,
        wait_timeout: float | None = None,
    ) -> None:
        conf = settings.DATA_LAYER
        self._alias = alias or conf["CACHE_ALIAS"]
        self._prefix = key_prefix or conf["CACHE_KEY_PREFIX"]
        self._entry_timeout = (
            conf["CACHE_ENTRY_TIMEOUT"] if entry_timeout is _UNSET else entry_timeout
        )
        self._wait_timeout = (
            wait_timeout if wait_timeout is not None else conf["COMPUTE_WAIT_TIMEOUT"]
        )

    @property
    def backend(self):
        return caches[self._alias]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_or_compute(
        self, cache_name: str, key_args: Iterable[Any], compute: Callable[[], V]
    ) -> V:
        """Return the cached value for ``key_args`` or compute, store and return it.

        Raises:
            CacheUnavailable: if the backend fails before ``compute`` runs.
        """
        key = make_cache_key(cache_name, key_args)

        while True:
            entry_key = self._entry_key(cache_name, key)
            entry = self._call("get", cache_name, lambda: self.backend.get(entry_key))
            if entry is not None:
                logger.debug("cache.hit", cache=cache_name)
                return entry.value

            with self._in_flight_lock:
                event = self._in_flight.get(entry_key)
                leader = event is None
                if leader:
                    event = threading.Event()
                    self._in_flight[entry_key] = event
            if leader:
                break
            event.wait(self._wait_timeout)

        logger.debug("cache.miss", cache=cache_name)
        try:
            value = compute()
            entry = CacheEntry(key=key, value=value, inserted_at=timezone.now())
            try:
                self._call(
                    "set",
                    cache_name,
                    lambda: self.backend.set(entry_key, entry, timeout=self._entry_timeout),
                )
            except CacheUnavailable:
                logger.warning("cache.store_failed", cache=cache_name)
            return value
        finally:
            with self._in_flight_lock:
                self._in_flight.pop(entry_key, None)
            event.set()

    def lookup(self, cache_name: str, key_args: Iterable[Any]) -> CacheEntry | None:
        """Return the live entry for ``key_args`` without computing anything."""
        entry_key = self._entry_key(cache_name, make_cache_key(cache_name, key_args))
        return self._call("get", cache_name, lambda: self.backend.get(entry_key))

    def invalidate(self, cache_name: str, key_args: Iterable[Any]) -> None:
        """Make one entry unreachable; no-op when it is absent.

        Bumps the key's version rather than deleting the entry, so a compute
        that read the old version stores its result where no reader looks.
        """
        key = make_cache_key(cache_name, key_args)
        self._call("invalidate", cache_name, lambda: self._bump(self._version_key(cache_name, key)))
        logger.debug("cache.invalidated", cache=cache_name)

    def invalidate_all(self, cache_name: str) -> None:
        """Drop every entry of a named cache."""
        generation_key = self._generation_key(cache_name)
        self._call("invalidate_all", cache_name, lambda: self._bump(generation_key, timeout=None))
        logger.info("cache.invalidated_all", cache=cache_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _generation_key(self, cache_name: str) -> str:
        return f"{self._prefix}:generation:{cache_name}"

    def _version_key(self, cache_name: str, key: str) -> str:
        digest = key.rsplit(":", 1)[-1]
        return f"{self._prefix}:version:{cache_name}:{digest}"

    def _entry_key(self, cache_name: str, key: str) -> str:
        """Storage key under the current generation and key version."""
        digest = key.rsplit(":", 1)[-1]
        generation = self._counter(cache_name, self._generation_key(cache_name), timeout=None)
        version = self._counter(cache_name, self._version_key(cache_name, key))
        return f"{self._prefix}:{cache_name}:{generation}:{version}:{digest}"

    def _counter(self, cache_name: str, counter_key: str, timeout: Any = _UNSET) -> int:
        timeout = self._entry_timeout if timeout is _UNSET else timeout

        def read() -> int:
            value = self.backend.get(counter_key)
            if value is None:
                self.backend.add(counter_key, time.time_ns(), timeout=timeout)
                value = self.backend.get(counter_key)
            return value if value is not None else 0

        return self._call("counter", cache_name, read)

    def _bump(self, counter_key: str, timeout: Any = _UNSET) -> None:
        try:
            self.backend.incr(counter_key)
        except ValueError:
            # Counter missing or evicted: restart from a value never handed out.
            timeout = self._entry_timeout if timeout is _UNSET else timeout
            self.backend.set(counter_key, time.time_ns(), timeout=timeout)

    def _call(self, action: str, cache_name: str, operation: Callable[[], V]) -> V:
        try:
            return operation()
        except Exception as exc:
            logger.warning(
                "cache.backend_error",
                action=action,
                cache=cache_name,
                error=str(exc),
            )
            raise CacheUnavailable(
                f"Cache backend failed during {action} on {cache_name}: {exc}"
            ) from exc
