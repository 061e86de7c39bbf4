# src/query_descriptor/base/clauses.py
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Tuple, Union

from .exceptions import UnresolvedReferenceError

# --- Setup Logging ---
log = logging.getLogger(__name__)

_MISSING = object()


# --- Operator Enums ---
class Operator(Enum):
    """Enumeration of condition operators understood by the executor."""

    # Comparison
    EQ = "eq"
    NOT = "not"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    # String / membership
    LIKE = "like"
    IN = "in"
    # Opaque passthrough
    RAW = "raw"


class SortOrder(Enum):
    """Direction of a sort key."""

    ASC = "asc"
    DESC = "desc"

    def reverse(self) -> "SortOrder":
        return SortOrder.DESC if self is SortOrder.ASC else SortOrder.ASC


# --- Operator Wrapper ---
@dataclass(frozen=True)
class OperatorClause:
    """
    Pairs a target (field name, resolved field or field path) with an operator.

    Used as a condition key (``OperatorClause("age", "gt")``), as an order
    entry (operator ``asc``/``desc``) or as a computed projection in
    ``fields`` (e.g. ``count``).
    """

    target: Any
    operator: str

    def __post_init__(self):
        if isinstance(self.operator, (Operator, SortOrder)):
            object.__setattr__(self, "operator", self.operator.value)
        if not isinstance(self.operator, str) or not self.operator:
            raise TypeError(
                f"OperatorClause operator must be a non-empty string, got {self.operator!r}"
            )

    def __repr__(self) -> str:
        return f"OperatorClause({self.target!r}, {self.operator!r})"


class ClauseTarget:
    """Mixin giving fields and paths shorthand constructors for clauses."""

    def _wrap(self, operator: str) -> OperatorClause:
        return OperatorClause(self, operator)

    def eq(self) -> OperatorClause:
        return self._wrap(Operator.EQ.value)

    def not_(self) -> OperatorClause:
        return self._wrap(Operator.NOT.value)

    def gt(self) -> OperatorClause:
        return self._wrap(Operator.GT.value)

    def gte(self) -> OperatorClause:
        return self._wrap(Operator.GTE.value)

    def lt(self) -> OperatorClause:
        return self._wrap(Operator.LT.value)

    def lte(self) -> OperatorClause:
        return self._wrap(Operator.LTE.value)

    def like(self) -> OperatorClause:
        return self._wrap(Operator.LIKE.value)

    def in_(self) -> OperatorClause:
        return self._wrap(Operator.IN.value)

    def asc(self) -> OperatorClause:
        return self._wrap(SortOrder.ASC.value)

    def desc(self) -> OperatorClause:
        return self._wrap(SortOrder.DESC.value)


# --- Ordering ---
@dataclass(frozen=True)
class Direction:
    """A sort key: a resolved field plus its ascending/descending sense."""

    field: Any
    order: SortOrder = SortOrder.ASC

    @property
    def descending(self) -> bool:
        return self.order is SortOrder.DESC

    def reverse(self) -> "Direction":
        """Returns the same sort key with the opposite direction."""
        return replace(self, order=self.order.reverse())

    def __repr__(self) -> str:
        return f"Direction({self.field!r}, {self.order.value})"


# --- Field Paths ---
@dataclass(frozen=True)
class FieldPath(ClauseTarget):
    """
    A chain of relationships, optionally terminated by a field.

    Attribute access walks the graph: ``FieldPath((author,)).name`` resolves
    ``name`` on the relationship's target model. Relationships extend the
    chain; a field terminates it.
    """

    relationships: Tuple[Any, ...]
    field: Optional[Any] = None

    def extend(self, name: str) -> "FieldPath":
        """Appends one segment, resolved against the model at the end of the chain."""
        if self.field is not None:
            raise UnresolvedReferenceError(
                f"Path {self.dotted!r} already ends at field {self.field.name!r}; "
                f"cannot resolve {name!r}"
            )
        if not self.relationships:
            raise UnresolvedReferenceError(
                f"Cannot resolve {name!r} on a path without relationships"
            )
        target = self.relationships[-1].target_schema
        relationship = target.relationship(name)
        if relationship is not None:
            log.debug(f"Path {self.dotted!r} extended by relationship '{name}'")
            return FieldPath(self.relationships + (relationship,))
        schema_field = target.field(name)
        if schema_field is not None:
            log.debug(f"Path {self.dotted!r} terminated by field '{name}'")
            return FieldPath(self.relationships, schema_field)
        raise UnresolvedReferenceError(
            f"{name!r} does not map to a field or relationship of "
            f"{target.model_name} (path {self.dotted!r})"
        )

    @property
    def dotted(self) -> str:
        parts = [relationship.name for relationship in self.relationships]
        if self.field is not None:
            parts.append(self.field.name)
        return ".".join(parts)

    def __getattr__(self, name: str) -> "FieldPath":
        if name.startswith("_"):
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            )
        try:
            return self.extend(name)
        except UnresolvedReferenceError as e:
            raise AttributeError(str(e)) from e

    def __repr__(self) -> str:
        return f"FieldPath({self.dotted!r})"


# --- Conditions ---
@dataclass(frozen=True)
class Condition:
    """A filter predicate: (operator, field, value)."""

    operator: Operator
    field: Any
    value: Any

    def with_value(self, value: Any) -> "Condition":
        return replace(self, value=value)

    def __iter__(self) -> Iterator[Any]:
        return iter((self.operator, self.field, self.value))

    def __repr__(self) -> str:
        return f"Condition({self.operator.value}, {self.field!r}, {self.value!r})"


@dataclass(frozen=True)
class RawCondition:
    """An opaque filter fragment passed to the executor as-is, with its bind values."""

    text: str
    bind_values: Tuple[Any, ...] = ()

    @property
    def operator(self) -> Operator:
        return Operator.RAW

    def __iter__(self) -> Iterator[Any]:
        if self.bind_values:
            return iter((Operator.RAW, self.text, list(self.bind_values)))
        return iter((Operator.RAW, self.text))

    def __repr__(self) -> str:
        if self.bind_values:
            return f"RawCondition({self.text!r}, {list(self.bind_values)!r})"
        return f"RawCondition({self.text!r})"


# --- Values ---
@dataclass(frozen=True)
class Range:
    """A two-sided range of comparable values; ``exclude_end`` makes it half-open."""

    start: Any
    end: Any
    exclude_end: bool = False

    def __contains__(self, item: Any) -> bool:
        if item < self.start:
            return False
        return item < self.end if self.exclude_end else item <= self.end

    def __repr__(self) -> str:
        return f"Range({self.start!r}{'...' if self.exclude_end else '..'}{self.end!r})"


class Deferred:
    """A value produced on demand by a zero-argument callable, evaluated at most once."""

    __slots__ = ("_producer", "_value")

    def __init__(self, producer: Callable[[], Any]):
        if not callable(producer):
            raise TypeError(
                f"Deferred requires a callable, got {type(producer).__name__}"
            )
        self._producer = producer
        self._value = _MISSING

    @property
    def resolved(self) -> bool:
        return self._value is not _MISSING

    def resolve(self) -> Any:
        if self._value is _MISSING:
            self._value = self._producer()
            log.debug(f"Resolved deferred value: {self._value!r}")
        return self._value

    def __repr__(self) -> str:
        if self.resolved:
            return f"Deferred(value={self._value!r})"
        return f"Deferred({self._producer!r})"


def resolve_value(value: Any) -> Any:
    """Returns the concrete value for ``value``, evaluating it if deferred."""
    return value.resolve() if isinstance(value, Deferred) else value


ConditionLike = Union[Condition, RawCondition]
