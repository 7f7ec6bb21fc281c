"""Data-layer exceptions.

Raised by the predicate builder, repositories, result cache and services.
Callers translate them into their own responses; predicate and not-found
errors are caller errors and are never retried here.
"""

from __future__ import annotations

from typing import Any, Mapping


class DataLayerError(Exception):
    """Base class for every error raised by the generic data layer."""


class InvalidPredicate(DataLayerError, ValueError):
    """Malformed or out-of-range query parameters (empty field, bad range, page size)."""


class NotFound(DataLayerError):
    """The identifier does not resolve to a stored entity."""

    def __init__(self, entity: str, id: Any) -> None:
        self.entity = entity
        self.id = id
        super().__init__(f"{entity} {id} not found.")


class RepositoryError(DataLayerError):
    """A store-level failure, wrapped with the operation that triggered it.

    The original driver exception is chained as ``__cause__``; the message
    only carries its string form.
    """

    def __init__(
        self,
        operation: str,
        entity: str,
        context: Mapping[str, Any] | None = None,
        reason: str = "",
    ) -> None:
        self.operation = operation
        self.entity = entity
        self.context = dict(context or {})
        message = f"{entity}.{operation} failed"
        if self.context:
            args = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            message = f"{message} ({args})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ServiceOverloaded(RepositoryError):
    """No bulkhead slot became free within the admission timeout."""


class CacheUnavailable(DataLayerError):
    """The cache backend failed; callers fall back to the store."""


class MigrationError(DataLayerError):
    """A migration runner operation failed."""
