"""Django ORM implementation of the generic repository.

Satisfies ``IRepository[T, K]`` for any model: subclasses declare the model,
the fields callers may filter and sort on, and optionally the natural sort
key.  Every predicate is turned into a ``Q`` object, so values always reach
the database as bound parameters.

Error handling follows the Null Object pattern for look-ups: a missing row
or a malformed identifier yields ``None`` / ``False`` / ``0``.  Store
failures (``django.db.DatabaseError``, including integrity violations) are
wrapped in ``RepositoryError`` with the operation and its key arguments.
All write operations run inside ``transaction.atomic()``.
"""

from __future__ import annotations

import math
from typing import Any, Callable, ClassVar, Iterable, List, Mapping, Optional, TypeVar

import structlog
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import DatabaseError, models, router, transaction
from django.db.models import Avg, Count, Max, Min, Sum
from django.utils import timezone

from modules.core.exceptions import InvalidPredicate, NotFound, RepositoryError
from modules.core.querying import PredicateBuilder, QueryDescriptor
from modules.core.repositories.interfaces import K, Aggregate, IRepository, T

logger = structlog.get_logger(__name__)

R = TypeVar("R")

_AGGREGATES = {
    Aggregate.SUM: Sum,
    Aggregate.AVG: Avg,
    Aggregate.MIN: Min,
    Aggregate.MAX: Max,
    Aggregate.COUNT: Count,
}

_INVALID_ID_ERRORS = (ValueError, TypeError, ValidationError)


class DjangoRepository(IRepository[T, K]):
    """Concrete generic repository backed by Django ORM.

    Subclass attributes:
        model: the Django model class.
        entity_name: prefix used in logs and errors (defaults to the model name).
        queryable_fields: fields accepted in predicates and sort keys
            (``id`` is always accepted).
        default_sort_field: natural key; ``name`` when the model has one,
            otherwise ``id``.
        related: forward relations fetched with ``select_related``.
    """

    model: ClassVar[type[models.Model] | None] = None
    entity_name: ClassVar[str] = ""
    queryable_fields: ClassVar[tuple[str, ...]] = ()
    default_sort_field: ClassVar[str | None] = None
    related: ClassVar[tuple[str, ...]] = ()

    def __init__(self) -> None:
        if self.model is None:
            raise ImproperlyConfigured(f"{type(self).__name__} must declare a model.")
        meta = self.model._meta
        self._entity = self.entity_name or meta.model_name
        self._sort_key = self.default_sort_field or (
            "name" if any(f.name == "name" for f in meta.fields) else "id"
        )
        self._label = meta.label
        self._writable = frozenset(
            name
            for field in meta.concrete_fields
            if not field.primary_key
            for name in (field.name, field.attname)
        )
        self._log = logger.bind(entity=self._entity)

    @property
    def entity(self) -> str:
        return self._entity

    def query(self) -> PredicateBuilder:
        return PredicateBuilder(self.queryable_fields, self._sort_key, self._entity)

    def all(self) -> QueryDescriptor:
        """Descriptor selecting every row in natural order."""
        return self.query().build()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, id: K) -> Optional[T]:
        """Retrieve an entity by primary key.

        Returns ``None`` for non-existent or invalid IDs (e.g. a string
        for an integer key).
        """

        def run():
            try:
                return self._base().filter(pk=id).first()
            except _INVALID_ID_ERRORS:
                return None

        return self._run("find_by_id", {"id": id}, run)

    def find_one(self, descriptor: QueryDescriptor) -> Optional[T]:
        queryset = self._ordered(descriptor)
        offset = descriptor.page.offset if descriptor.page else 0
        return self._run(
            "find_one",
            self._context(descriptor),
            lambda: next(iter(queryset[offset : offset + 1]), None),
        )

    def find_by_predicate(self, descriptor: QueryDescriptor) -> List[T]:
        queryset = self._ordered(descriptor)
        if descriptor.page is not None:
            page = descriptor.page
            queryset = queryset[page.offset : page.offset + page.limit]
        return self._run("find_by_predicate", self._context(descriptor), lambda: list(queryset))

    def count(self, descriptor: QueryDescriptor) -> int:
        queryset = self._filtered(descriptor)
        return self._run("count", self._context(descriptor), queryset.count)

    def exists(self, descriptor: QueryDescriptor) -> bool:
        queryset = self._filtered(descriptor)
        return self._run("exists", self._context(descriptor), queryset.exists)

    def page_count(self, descriptor: QueryDescriptor, page_size: int) -> int:
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
            raise InvalidPredicate("page_size must be a positive integer.")
        return math.ceil(self.count(descriptor) / page_size)

    def aggregate(
        self, descriptor: QueryDescriptor, function: Aggregate | str, field: str
    ) -> Any:
        try:
            function = Aggregate(function)
        except ValueError as exc:
            raise InvalidPredicate(f"Unknown aggregate {function!r}.") from exc
        self._check_field(field)
        queryset = self._filtered(descriptor)
        expression = _AGGREGATES[function](field)
        return self._run(
            f"aggregate_{function.value}",
            {**self._context(descriptor), "field": field},
            lambda: queryset.aggregate(result=expression)["result"],
        )

    def distinct_values(self, descriptor: QueryDescriptor, field: str) -> List[Any]:
        self._check_field(field)
        queryset = (
            self._filtered(descriptor)
            .filter(**{f"{field}__isnull": False})
            .order_by(field)
            .values_list(field, flat=True)
            .distinct()
        )
        return self._run(
            "distinct_values",
            {**self._context(descriptor), "field": field},
            lambda: list(queryset),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, entity: T) -> T:
        """Persist (create or update) an entity."""
        is_new = entity._state.adding

        def run() -> T:
            entity.save()
            return entity

        saved = self._write("save", {"id": entity.pk}, run)
        self._log.info("repository.saved", id=saved.pk, is_new=is_new)
        return saved

    def save_all(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)

        def run() -> List[T]:
            for entity in entities:
                entity.save()
            return entities

        saved = self._write("save_all", {"size": len(entities)}, run)
        self._log.info("repository.saved_all", size=len(saved))
        return saved

    def update(self, entity: T) -> T:
        """Overwrite every field of an existing row with ``entity``.

        Raises:
            NotFound: if the entity has no identifier or no row carries it.
        """
        if entity.pk is None:
            raise NotFound(self._entity, None)

        def run() -> T:
            try:
                present = self.model._default_manager.filter(pk=entity.pk).exists()
            except _INVALID_ID_ERRORS:
                present = False
            if not present:
                raise NotFound(self._entity, entity.pk)
            entity.save(force_update=True)
            return entity

        updated = self._write("update", {"id": entity.pk}, run)
        self._log.info("repository.updated", id=updated.pk)
        return updated

    def update_field(self, id: K, field: str, value: Any) -> int:
        return self.update_fields(id, {field: value})

    def update_fields(self, id: K, values: Mapping[str, Any]) -> int:
        values = self._set_clauses(values)

        def run() -> int:
            try:
                queryset = self.model._default_manager.filter(pk=id)
            except _INVALID_ID_ERRORS:
                return 0
            return queryset.update(**values)

        affected = self._write("update_fields", {"id": id, "fields": sorted(values)}, run)
        self._log.info("repository.fields_updated", id=id, fields=sorted(values), affected=affected)
        return affected

    def update_by_predicate(
        self, descriptor: QueryDescriptor, values: Mapping[str, Any]
    ) -> int:
        values = self._set_clauses(values)
        queryset = self._filtered(descriptor, related=False)
        affected = self._write(
            "update_by_predicate",
            {**self._context(descriptor), "fields": sorted(values)},
            lambda: queryset.update(**values),
        )
        self._log.info("repository.bulk_updated", fields=sorted(values), affected=affected)
        return affected

    def delete_by_id(self, id: K) -> bool:
        """Remove one row; cascaded rows of other models are not counted."""

        def run() -> bool:
            try:
                queryset = self.model._default_manager.filter(pk=id)
            except _INVALID_ID_ERRORS:
                return False
            _, per_model = queryset.delete()
            return per_model.get(self._label, 0) > 0

        removed = self._write("delete_by_id", {"id": id}, run)
        if removed:
            self._log.info("repository.deleted", id=id)
        return removed

    def delete_by_predicate(self, descriptor: QueryDescriptor) -> int:
        queryset = self._filtered(descriptor, related=False)

        def run() -> int:
            _, per_model = queryset.delete()
            return per_model.get(self._label, 0)

        removed = self._write("delete_by_predicate", self._context(descriptor), run)
        self._log.info("repository.bulk_deleted", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Query construction
    # ------------------------------------------------------------------

    def _base(self, related: bool = True) -> models.QuerySet:
        queryset = self.model._default_manager.all()
        if related and self.related:
            queryset = queryset.select_related(*self.related)
        return queryset

    def _filtered(self, descriptor: QueryDescriptor, related: bool = True) -> models.QuerySet:
        builder = self.query()
        for condition in descriptor.conditions:
            builder.check_field(condition.field)
        return self._base(related).filter(descriptor.to_q())

    def _ordered(self, descriptor: QueryDescriptor) -> models.QuerySet:
        self._check_field(descriptor.sort_field)
        return self._filtered(descriptor).order_by(*descriptor.ordering())

    def _check_field(self, field: str) -> None:
        self.query().check_field(field)

    def _set_clauses(self, values: Mapping[str, Any]) -> dict[str, Any]:
        if not values:
            raise InvalidPredicate("At least one field must be updated.")
        unknown = sorted(name for name in values if name not in self._writable)
        if unknown:
            raise InvalidPredicate(
                f"Field(s) {', '.join(map(repr, unknown))} cannot be updated on {self._entity}."
            )
        values = dict(values)
        if "updated_at" in self._writable and "updated_at" not in values:
            values["updated_at"] = timezone.now()
        return values

    @staticmethod
    def _context(descriptor: QueryDescriptor) -> dict[str, Any]:
        context: dict[str, Any] = {
            "conditions": [
                f"{c.field} {c.operator.value} {c.value!r}" for c in descriptor.conditions
            ],
        }
        if descriptor.page is not None:
            context["page"] = (descriptor.page.page_index, descriptor.page.page_size)
        return context

    # ------------------------------------------------------------------
    # Error wrapping
    # ------------------------------------------------------------------

    def _run(self, operation: str, context: Mapping[str, Any], call: Callable[[], R]) -> R:
        try:
            return call()
        except DatabaseError as exc:
            self._log.error(
                "repository.store_error",
                operation=operation,
                context=dict(context),
                error=str(exc),
            )
            raise RepositoryError(operation, self._entity, context, reason=str(exc)) from exc

    def _write(self, operation: str, context: Mapping[str, Any], call: Callable[[], R]) -> R:
        def atomic_call() -> R:
            with transaction.atomic(using=router.db_for_write(self.model)):
                return call()

        return self._run(operation, context, atomic_call)
