"""Generic repository interface (Dependency Inversion Principle).

Provides ``IRepository[T, K]``, the contract every entity repository
satisfies.  Service-layer code depends on this abstraction, never on the
Django ORM directly.  ``T`` is the entity type, ``K`` its identifier type.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any, Generic, Iterable, List, Mapping, Optional, TypeVar

from modules.core.querying import PredicateBuilder, QueryDescriptor

T = TypeVar("T")
K = TypeVar("K")


class Aggregate(str, enum.Enum):
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class IRepository(ABC, Generic[T, K]):
    """Base generic repository contract.

    Repositories are stateless: they own no cache and perform no retries.
    Store failures surface as ``RepositoryError``.
    """

    @abstractmethod
    def query(self) -> PredicateBuilder:
        """Return a fresh predicate builder bound to this entity's fields."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    def find_by_id(self, id: K) -> Optional[T]:
        """Retrieve an entity by primary key, ``None`` when absent."""

    @abstractmethod
    def find_one(self, descriptor: QueryDescriptor) -> Optional[T]:
        """First entity matching ``descriptor`` in its sort order."""

    @abstractmethod
    def find_by_predicate(self, descriptor: QueryDescriptor) -> List[T]:
        """Entities matching ``descriptor``, paginated when it carries a page."""

    @abstractmethod
    def count(self, descriptor: QueryDescriptor) -> int:
        """Number of matches, ignoring pagination."""

    @abstractmethod
    def exists(self, descriptor: QueryDescriptor) -> bool:
        """``count(descriptor) > 0``."""

    @abstractmethod
    def page_count(self, descriptor: QueryDescriptor, page_size: int) -> int:
        """``ceil(count(descriptor) / page_size)``."""

    @abstractmethod
    def aggregate(
        self, descriptor: QueryDescriptor, function: Aggregate, field: str
    ) -> Any:
        """Apply ``function`` to ``field`` over the matching rows."""

    @abstractmethod
    def distinct_values(self, descriptor: QueryDescriptor, field: str) -> List[Any]:
        """Sorted distinct non-null values of ``field`` over the matching rows."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    def save(self, entity: T) -> T:
        """Persist an entity, assigning an identifier when it has none."""

    @abstractmethod
    def save_all(self, entities: Iterable[T]) -> List[T]:
        """Persist several entities in one transaction."""

    @abstractmethod
    def update(self, entity: T) -> T:
        """Full-record merge of an existing row.

        Raises:
            NotFound: the entity has no identifier or no row carries it.
        """

    @abstractmethod
    def update_field(self, id: K, field: str, value: Any) -> int:
        """Set one field on one row; returns rows affected (0 or 1)."""

    @abstractmethod
    def update_fields(self, id: K, values: Mapping[str, Any]) -> int:
        """Set several fields on one row; returns rows affected (0 or 1)."""

    @abstractmethod
    def update_by_predicate(
        self, descriptor: QueryDescriptor, values: Mapping[str, Any]
    ) -> int:
        """Bulk update every matching row; returns rows affected."""

    @abstractmethod
    def delete_by_id(self, id: K) -> bool:
        """Remove one row; ``True`` when a row was removed."""

    @abstractmethod
    def delete_by_predicate(self, descriptor: QueryDescriptor) -> int:
        """Remove every matching row; returns how many were removed."""
