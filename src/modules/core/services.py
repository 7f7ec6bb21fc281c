"""Generic service layer (Use Cases).

``GenericService[T, K]`` wraps a repository with the result cache:

- reads go through ``ResultCache.get_or_compute`` under a named cache
  ``<prefix>-<operation>``; a cache backend failure is logged and the read
  goes straight to the repository;
- writes run the repository call, then invalidate the caches the write can
  affect before returning.  When the call joined an outer transaction the
  invalidation runs once more on commit, and until then reads of the
  written entities skip the shared cache so uncommitted rows never reach
  it.  A rollback discards the pending invalidation and the bypass with it;
- every repository call is admitted through the entity's bulkhead.

Invalidation policy after a successful write:

- ``<prefix>-by-id`` / ``<prefix>-exists-by-id`` entries are removed for
  the identifiers the write touched;
- every collection, count and aggregate cache of the entity (generic and
  ``domain_caches``) is fully invalidated, as are all caches of the
  entities named in ``cascades_to``;
- writes whose identifiers are unknown (bulk updates and deletes) fully
  invalidate every cache of the entity.

Entity services subclass this, set ``repository_class`` and
``entity_name``, and declare the named caches their domain methods populate
in ``domain_caches`` so the scheduled sweep can enumerate them.
"""

from __future__ import annotations

from typing import Any, Callable, ClassVar, Generic, Iterable, List, Optional, Sequence, TypeVar

import structlog
from django.db import transaction

from modules.core.bulkhead import get_bulkhead
from modules.core.cache import ResultCache
from modules.core.exceptions import CacheUnavailable, InvalidPredicate, NotFound
from modules.core.querying import QueryDescriptor, SortDirection
from modules.core.repositories.django_repository import DjangoRepository
from modules.core.repositories.interfaces import IRepository, K, T
from modules.core.sweep import SweepReport, invalidate_caches, sweep_registry

logger = structlog.get_logger(__name__)

R = TypeVar("R")

# ---------------------------------------------------------------------------
# Named cache suffixes
# ---------------------------------------------------------------------------

BY_ID = "by-id"
BY_NAME = "by-name"
ALL_SORTED = "all-sorted"
PAGINATED = "paginated"
NAME_CONTAINING = "name-containing"
COUNT_ALL = "count-all"
COUNT_BY_NAME_PATTERN = "count-by-name-pattern"
EXISTS_BY_NAME = "exists-by-name"
EXISTS_BY_ID = "exists-by-id"
TOP_N = "top-n"
PAGE_COUNT = "page-count"

IDENTITY_CACHES = (BY_ID, EXISTS_BY_ID)
GENERIC_CACHES = (
    BY_ID,
    BY_NAME,
    ALL_SORTED,
    PAGINATED,
    NAME_CONTAINING,
    COUNT_ALL,
    COUNT_BY_NAME_PATTERN,
    EXISTS_BY_NAME,
    EXISTS_BY_ID,
    TOP_N,
    PAGE_COUNT,
)


def _require_page_size(page_size: int) -> None:
    if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
        raise InvalidPredicate("page_size must be a positive integer.")


class PendingInvalidation:
    """``on_commit`` callback repeating a write's invalidation after commit.

    While it waits in the connection's commit queue the entities it names
    have uncommitted writes. Rolling back the block or savepoint that
    registered it removes it from the queue.
    """

    def __init__(self, entities: Iterable[str], invalidate: Callable[[], None]) -> None:
        self.entities = frozenset(entities)
        self.done = False
        self._invalidate = invalidate

    def __call__(self) -> None:
        self.done = True
        self._invalidate()


def has_uncommitted_writes(entity: str) -> bool:
    """True when the current transaction wrote ``entity`` and has not committed."""
    connection = transaction.get_connection()
    if not connection.in_atomic_block:
        return False
    return any(
        isinstance(callback, PendingInvalidation)
        and not callback.done
        and entity in callback.entities
        for _, callback, *_ in connection.run_on_commit
    )


class GenericService(Generic[T, K]):
    """Cached CRUD, search, pagination and aggregation for one entity type.

    Receives an ``IRepository`` and a ``ResultCache`` via constructor
    injection (DIP); both default to the configured implementations.
    """

    entity_name: ClassVar[str] = ""
    repository_class: ClassVar[type[DjangoRepository] | None] = None
    id_type: ClassVar[Callable[[Any], Any]] = int
    sweep_interval: ClassVar[int | None] = None
    domain_caches: ClassVar[tuple[str, ...]] = ()
    cascades_to: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        repository: IRepository[T, K] | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        if repository is None:
            if self.repository_class is None:
                raise TypeError(f"{type(self).__name__} needs a repository.")
            repository = self.repository_class()
        self._repo = repository
        self._cache = cache or ResultCache()
        self._bulkhead = get_bulkhead(self.entity_name)
        self._log = logger.bind(entity=self.entity_name)

    # ------------------------------------------------------------------
    # Cache naming
    # ------------------------------------------------------------------

    @classmethod
    def cache_name(cls, suffix: str) -> str:
        return f"{cls.entity_name}-{suffix}"

    @classmethod
    def cache_names(cls) -> tuple[str, ...]:
        """Every named cache this service populates."""
        return tuple(cls.cache_name(s) for s in (*GENERIC_CACHES, *cls.domain_caches))

    # ------------------------------------------------------------------
    # Queries: identity
    # ------------------------------------------------------------------

    def find_by_id(self, id: K) -> Optional[T]:
        id = self._normalize_id(id)
        return self._cached(BY_ID, (id,), lambda: self._repo.find_by_id(id))

    def get_by_id(self, id: K) -> T:
        """Retrieve a single entity by ID.

        Raises:
            NotFound: if the entity does not exist.
        """
        entity = self.find_by_id(id)
        if entity is None:
            raise NotFound(self.entity_name, id)
        return entity

    def exists_by_id(self, id: K) -> bool:
        id = self._normalize_id(id)
        return self._cached(
            EXISTS_BY_ID, (id,), lambda: self._repo.find_by_id(id) is not None
        )

    # ------------------------------------------------------------------
    # Queries: name
    # ------------------------------------------------------------------

    def find_by_name(self, name: str) -> List[T]:
        descriptor = self._repo.query().equals("name", name).build()
        return self._cached(BY_NAME, (name,), lambda: self._repo.find_by_predicate(descriptor))

    def exists_by_name(self, name: str) -> bool:
        descriptor = self._repo.query().equals("name", name).build()
        return self._cached(EXISTS_BY_NAME, (name,), lambda: self._repo.exists(descriptor))

    def find_by_name_containing(
        self,
        fragment: str,
        ignore_case: bool = False,
        page_index: int | None = None,
        page_size: int | None = None,
    ) -> List[T]:
        builder = self._repo.query().contains("name", fragment, ignore_case=ignore_case)
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        descriptor = builder.build()
        return self._cached(
            NAME_CONTAINING,
            (fragment, ignore_case, page_index, page_size),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_by_name_paginated(
        self, fragment: str, page_index: int, page_size: int
    ) -> List[T]:
        return self.find_by_name_containing(fragment, False, page_index, page_size)

    def count_by_name_pattern(self, fragment: str, ignore_case: bool = False) -> int:
        descriptor = self._repo.query().contains("name", fragment, ignore_case=ignore_case).build()
        return self._cached(
            COUNT_BY_NAME_PATTERN,
            (fragment, ignore_case),
            lambda: self._repo.count(descriptor),
        )

    def page_count_by_name_pattern(
        self, fragment: str, page_size: int, ignore_case: bool = False
    ) -> int:
        _require_page_size(page_size)
        descriptor = self._repo.query().contains("name", fragment, ignore_case=ignore_case).build()
        return self._cached(
            PAGE_COUNT,
            (page_size, fragment, ignore_case),
            lambda: self._repo.page_count(descriptor, page_size),
        )

    # ------------------------------------------------------------------
    # Queries: collections
    # ------------------------------------------------------------------

    def find_all_sorted(
        self,
        sort_field: str | None = None,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> List[T]:
        descriptor = self._repo.query().order_by(sort_field, direction).build()
        return self._cached(
            ALL_SORTED,
            (descriptor.sort_field, descriptor.sort_direction.value),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_all_sorted_by_name(self) -> List[T]:
        return self.find_all_sorted("name")

    def find_paginated(self, page_index: int, page_size: int) -> List[T]:
        return self.find_paginated_sorted(page_index, page_size)

    def find_paginated_sorted(
        self,
        page_index: int,
        page_size: int,
        sort_field: str | None = None,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> List[T]:
        descriptor = (
            self._repo.query().order_by(sort_field, direction).page(page_index, page_size).build()
        )
        return self._cached(
            PAGINATED,
            (page_index, page_size, descriptor.sort_field, descriptor.sort_direction.value),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def find_top_n(
        self,
        limit: int,
        sort_field: str | None = None,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> List[T]:
        """First ``limit`` entities in natural (or the given) order."""
        descriptor = self._repo.query().order_by(sort_field, direction).page(0, limit).build()
        return self._cached(
            TOP_N,
            (limit, descriptor.sort_field, descriptor.sort_direction.value),
            lambda: self._repo.find_by_predicate(descriptor),
        )

    def count_all(self) -> int:
        descriptor = self._repo.query().build()
        return self._cached(COUNT_ALL, (), lambda: self._repo.count(descriptor))

    def page_count(self, page_size: int) -> int:
        _require_page_size(page_size)
        descriptor = self._repo.query().build()
        return self._cached(
            PAGE_COUNT,
            (page_size, None, None),
            lambda: self._repo.page_count(descriptor, page_size),
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def save(self, entity: T) -> T:
        saved = self._write("save", lambda: self._repo.save(entity), ids=lambda r: [r.pk])
        self._log.info("service.saved", id=saved.pk)
        return saved

    def save_all(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)
        saved = self._write(
            "save_all",
            lambda: self._repo.save_all(entities),
            ids=lambda r: [e.pk for e in r],
        )
        self._log.info("service.saved_all", size=len(saved))
        return saved

    def update(self, entity: T) -> T:
        """Overwrite an existing entity.

        Raises:
            NotFound: if the entity has no identifier or does not exist.
        """
        updated = self._write("update", lambda: self._repo.update(entity), ids=lambda r: [r.pk])
        self._log.info("service.updated", id=updated.pk)
        return updated

    def update_name(self, id: K, name: str) -> int:
        return self.update_field(id, "name", name)

    def update_field(self, id: K, field: str, value: Any) -> int:
        id = self._normalize_id(id)
        affected = self._write(
            "update_field",
            lambda: self._repo.update_field(id, field, value),
            ids=lambda count: [id] if count else None,
            when=bool,
        )
        self._log.info("service.field_updated", id=id, field=field, affected=affected)
        return affected

    def update_fields(self, id: K, values: dict[str, Any]) -> int:
        id = self._normalize_id(id)
        return self._write(
            "update_fields",
            lambda: self._repo.update_fields(id, values),
            ids=lambda count: [id],
            when=bool,
        )

    def delete_by_id(self, id: K) -> bool:
        id = self._normalize_id(id)
        removed = self._write(
            "delete_by_id",
            lambda: self._repo.delete_by_id(id),
            ids=lambda _: [id],
            when=bool,
        )
        self._log.info("service.deleted", id=id, removed=removed)
        return removed

    def delete(self, entity: T) -> bool:
        if entity.pk is None:
            return False
        return self.delete_by_id(entity.pk)

    def delete_by_name(self, name: str) -> int:
        descriptor = self._repo.query().equals("name", name).build()
        return self._bulk_delete("delete_by_name", descriptor)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep_caches(self) -> SweepReport:
        """Fully invalidate every named cache of this entity."""
        return invalidate_caches(self.entity_name, self.cache_names(), self._cache)

    # ------------------------------------------------------------------
    # Helpers for entity services
    # ------------------------------------------------------------------

    def _cached(self, suffix: str, key_args: Sequence[Any], compute: Callable[[], R]) -> R:
        """Read through the named cache ``<prefix>-<suffix>``."""
        name = self.cache_name(suffix)

        def guarded() -> R:
            return self._guarded(suffix, compute)

        if has_uncommitted_writes(self.entity_name):
            self._log.debug("service.cache_skipped", cache=name, reason="uncommitted_writes")
            return guarded()
        try:
            return self._cache.get_or_compute(name, key_args, guarded)
        except CacheUnavailable:
            self._log.warning("service.cache_bypassed", cache=name)
            return guarded()

    def _guarded(self, operation: str, call: Callable[[], R]) -> R:
        with self._bulkhead.admit(operation):
            return call()

    def _write(
        self,
        operation: str,
        call: Callable[[], R],
        ids: Callable[[R], Optional[Iterable[Any]]] = lambda _: None,
        when: Callable[[R], bool] = lambda _: True,
    ) -> R:
        """Run a mutating repository call, then invalidate what it touched.

        ``ids`` maps the result to the identifiers written (``None`` means
        unknown); ``when`` decides from the result whether anything changed.
        """
        result = self._guarded(operation, call)
        if when(result):
            affected = ids(result)
            self._invalidate_related(None if affected is None else list(affected))
        return result

    def _bulk_update(
        self, operation: str, descriptor: QueryDescriptor, values: dict[str, Any]
    ) -> int:
        affected = self._write(
            operation,
            lambda: self._repo.update_by_predicate(descriptor, values),
            when=bool,
        )
        self._log.info("service.bulk_updated", operation=operation, affected=affected)
        return affected

    def _bulk_delete(self, operation: str, descriptor: QueryDescriptor) -> int:
        removed = self._write(
            operation,
            lambda: self._repo.delete_by_predicate(descriptor),
            when=bool,
        )
        self._log.info("service.bulk_deleted", operation=operation, removed=removed)
        return removed

    def _invalidate_related(self, ids: Optional[List[Any]]) -> None:
        self._invalidate_now(ids)
        if transaction.get_connection().in_atomic_block:
            transaction.on_commit(
                PendingInvalidation(
                    (self.entity_name, *self.cascades_to), lambda: self._invalidate_now(ids)
                )
            )

    def _invalidate_now(self, ids: Optional[List[Any]]) -> None:
        identity = {self.cache_name(s) for s in IDENTITY_CACHES}
        for name in self.cache_names():
            if name in identity and ids is not None:
                for id in ids:
                    self._safely(self._cache.invalidate, name, (self._normalize_id(id),))
            else:
                self._safely(self._cache.invalidate_all, name)
        for entity in self.cascades_to:
            for name in sweep_registry.cache_names(entity):
                self._safely(self._cache.invalidate_all, name)

    def _safely(self, invalidation: Callable[..., None], name: str, *args: Any) -> None:
        try:
            invalidation(name, *args)
        except CacheUnavailable as exc:
            self._log.error("service.invalidation_failed", cache=name, error=str(exc))

    def _normalize_id(self, id: Any) -> Any:
        if isinstance(id, bool):
            return id
        try:
            return self.id_type(id)
        except (TypeError, ValueError):
            return id
