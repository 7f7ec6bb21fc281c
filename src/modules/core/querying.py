"""Query predicate builder.

Turns a field name, an operator and its value(s), plus optional sort and
pagination parameters, into an immutable ``QueryDescriptor``. Descriptors
are translated into Django ``Q`` objects, so every value reaches the
database as a bound parameter of the ORM-generated statement; no query
text is ever assembled from caller input.

Field names are checked against the set each repository declares as
queryable, which keeps the lookup paths handed to the ORM closed.

Usage::

    query = (
        repository.query()
        .contains("name", "elec", ignore_case=True)
        .order_by("name")
        .page(0, 20)
        .build()
    )
    repository.find_by_predicate(query)
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from typing import Any, Literal

from django.db.models import Q
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from modules.core.exceptions import InvalidPredicate

MAX_PAGE_SIZE = 100


class Operator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    STARTS_WITH = "starts_with"
    ISTARTS_WITH = "istarts_with"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    BETWEEN = "between"
    IN = "in"
    IS_NULL = "is_null"


_LOOKUPS = {
    Operator.EQUALS: "exact",
    Operator.NOT_EQUALS: "exact",
    Operator.CONTAINS: "contains",
    Operator.ICONTAINS: "icontains",
    Operator.STARTS_WITH: "startswith",
    Operator.ISTARTS_WITH: "istartswith",
    Operator.GREATER_THAN: "gt",
    Operator.GREATER_OR_EQUAL: "gte",
    Operator.LESS_THAN: "lt",
    Operator.LESS_OR_EQUAL: "lte",
    Operator.BETWEEN: "range",
    Operator.IN: "in",
    Operator.IS_NULL: "isnull",
}


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: SortDirection | str | None) -> SortDirection:
        if value is None:
            return cls.ASC
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidPredicate(f"Unknown sort direction {value!r}.") from exc


def _describe_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error["msg"].removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


class _ValueObject(BaseModel):
    """Frozen pydantic model whose validation failures surface as InvalidPredicate."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidPredicate(_describe_validation_error(exc)) from exc


class PageRequest(_ValueObject):
    """Zero-based page index and a page size within ``[1, MAX_PAGE_SIZE]``."""

    page_index: int = Field(ge=0)
    page_size: int = Field(ge=1, le=MAX_PAGE_SIZE)

    @classmethod
    def of(cls, page_index: int, page_size: int) -> PageRequest:
        return cls(page_index=page_index, page_size=page_size)

    @property
    def offset(self) -> int:
        return self.page_index * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class Condition(_ValueObject):
    """A single ``field <operator> value`` predicate."""

    field: str
    operator: Operator
    value: Any = None

    @field_validator("field")
    @classmethod
    def field_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field name must not be empty.")
        return v.strip()

    @field_validator("value", mode="before")
    @classmethod
    def sequences_become_tuples(cls, v: Any) -> Any:
        if isinstance(v, list):
            return tuple(v)
        if isinstance(v, (set, frozenset)):
            return tuple(sorted(v, key=repr))
        return v

    @model_validator(mode="after")
    def value_matches_operator(self) -> Condition:
        if self.operator is Operator.BETWEEN:
            if not isinstance(self.value, tuple) or len(self.value) != 2:
                raise ValueError("Range requires exactly two bounds.")
            low, high = self.value
            if low is None or high is None:
                raise ValueError("Range bounds must not be null.")
            try:
                inverted = high < low
            except TypeError as exc:
                raise ValueError("Range bounds are not comparable.") from exc
            if inverted:
                raise ValueError("Range upper bound is lower than the lower bound.")
        elif self.operator is Operator.IN:
            if not isinstance(self.value, tuple) or not self.value:
                raise ValueError("IN requires a non-empty sequence of values.")
        elif self.operator is Operator.IS_NULL:
            if not isinstance(self.value, bool):
                raise ValueError("IS_NULL requires a boolean value.")
        return self

    def to_q(self) -> Q:
        if self.value is None and self.operator in (Operator.EQUALS, Operator.NOT_EQUALS):
            return Q(**{f"{self.field}__isnull": self.operator is Operator.EQUALS})
        q = Q(**{f"{self.field}__{_LOOKUPS[self.operator]}": self.value})
        return ~q if self.operator is Operator.NOT_EQUALS else q


class QueryDescriptor(_ValueObject):
    """Immutable filter + sort + page description of a repository query.

    An empty ``conditions`` tuple selects every row. Conditions are AND-ed
    unless ``match`` is ``"any"``.
    """

    conditions: tuple[Condition, ...] = ()
    match: Literal["all", "any"] = "all"
    sort_field: str = "id"
    sort_direction: SortDirection = SortDirection.ASC
    page: PageRequest | None = None

    @property
    def selects_all(self) -> bool:
        return not self.conditions

    @property
    def bound_values(self) -> tuple[Any, ...]:
        return tuple(condition.value for condition in self.conditions)

    def to_q(self) -> Q:
        q = Q()
        for condition in self.conditions:
            if self.match == "any":
                q |= condition.to_q()
            else:
                q &= condition.to_q()
        return q

    def ordering(self) -> list[str]:
        prefix = "-" if self.sort_direction is SortDirection.DESC else ""
        ordering = [f"{prefix}{self.sort_field}"]
        if self.sort_field not in ("id", "pk"):
            ordering.append("pk")
        return ordering

    def without_page(self) -> QueryDescriptor:
        return self.model_copy(update={"page": None})

    def with_page(self, page_index: int, page_size: int) -> QueryDescriptor:
        return self.model_copy(update={"page": PageRequest.of(page_index, page_size)})


class PredicateBuilder:
    """Fluent, field-checked factory for ``QueryDescriptor`` objects.

    One builder produces one descriptor; repositories hand out a fresh
    builder from ``query()``.
    """

    def __init__(
        self,
        allowed_fields: Iterable[str],
        default_sort: str = "id",
        entity: str = "entity",
    ) -> None:
        self._allowed = frozenset(allowed_fields) | {"id"}
        self._default_sort = default_sort
        self._entity = entity
        self._conditions: list[Condition] = []
        self._match: Literal["all", "any"] = "all"
        self._sort_field: str | None = None
        self._direction = SortDirection.ASC
        self._page: PageRequest | None = None

    @property
    def allowed_fields(self) -> frozenset[str]:
        return self._allowed

    def fresh(self) -> PredicateBuilder:
        return PredicateBuilder(self._allowed, self._default_sort, self._entity)

    def check_field(self, field: str) -> str:
        if not field or not str(field).strip():
            raise InvalidPredicate("Field name must not be empty.")
        if field not in self._allowed:
            raise InvalidPredicate(f"Field {field!r} is not queryable on {self._entity}.")
        return field

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def where(self, field: str, operator: Operator | str, value: Any = None) -> PredicateBuilder:
        self.check_field(field)
        try:
            operator = Operator(operator)
        except ValueError as exc:
            raise InvalidPredicate(f"Unknown operator {operator!r}.") from exc
        self._conditions.append(Condition(field=field, operator=operator, value=value))
        return self

    def equals(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.EQUALS, value)

    def not_equals(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.NOT_EQUALS, value)

    def contains(self, field: str, value: str, ignore_case: bool = False) -> PredicateBuilder:
        operator = Operator.ICONTAINS if ignore_case else Operator.CONTAINS
        return self.where(field, operator, value)

    def starts_with(self, field: str, value: str, ignore_case: bool = False) -> PredicateBuilder:
        operator = Operator.ISTARTS_WITH if ignore_case else Operator.STARTS_WITH
        return self.where(field, operator, value)

    def greater_than(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.GREATER_THAN, value)

    def at_least(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.GREATER_OR_EQUAL, value)

    def less_than(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.LESS_THAN, value)

    def at_most(self, field: str, value: Any) -> PredicateBuilder:
        return self.where(field, Operator.LESS_OR_EQUAL, value)

    def between(self, field: str, low: Any, high: Any) -> PredicateBuilder:
        return self.where(field, Operator.BETWEEN, (low, high))

    def is_in(self, field: str, values: Iterable[Any]) -> PredicateBuilder:
        return self.where(field, Operator.IN, tuple(values))

    def is_null(self, field: str, flag: bool = True) -> PredicateBuilder:
        return self.where(field, Operator.IS_NULL, flag)

    def is_not_blank(self, field: str) -> PredicateBuilder:
        """Keep rows where ``field`` is neither NULL nor the empty string."""
        return self.is_null(field, False).not_equals(field, "")

    def match_any(self) -> PredicateBuilder:
        self._match = "any"
        return self

    # ------------------------------------------------------------------
    # Sort / page
    # ------------------------------------------------------------------

    def order_by(
        self,
        field: str | None = None,
        direction: SortDirection | str | None = SortDirection.ASC,
    ) -> PredicateBuilder:
        if field is not None:
            self.check_field(field)
        self._sort_field = field
        self._direction = SortDirection.parse(direction)
        return self

    def page(self, page_index: int, page_size: int) -> PredicateBuilder:
        self._page = PageRequest.of(page_index, page_size)
        return self

    def build(self) -> QueryDescriptor:
        return QueryDescriptor(
            conditions=tuple(self._conditions),
            match=self._match,
            sort_field=self._sort_field or self._default_sort,
            sort_direction=self._direction,
            page=self._page,
        )

    def describe(
        self,
        field: str,
        operator: Operator | str,
        value: Any = None,
        sort_field: str | None = None,
        direction: SortDirection | str | None = SortDirection.ASC,
        page_index: int | None = None,
        page_size: int | None = None,
    ) -> QueryDescriptor:
        """Single-shot form: one condition, optional sort and page."""
        builder = self.fresh().where(field, operator, value).order_by(sort_field, direction)
        if page_size is not None:
            builder.page(page_index or 0, page_size)
        elif page_index is not None:
            raise InvalidPredicate("page_index given without page_size.")
        return builder.build()
