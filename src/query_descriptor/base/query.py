# src/query_descriptor/base/query.py
import copy
import logging
import re
from typing import (
    Any,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .clauses import (
    Condition,
    ConditionLike,
    Direction,
    FieldPath,
    Operator,
    OperatorClause,
    Range,
    RawCondition,
    SortOrder,
    resolve_value,
)
from .exceptions import (
    IncompatibleMergeError,
    InvalidOptionError,
    UnresolvedReferenceError,
    UnsupportedClauseError,
)
from .repository import Repository
from .schema import Relationship, SchemaAdapter, SchemaField
from .utils import COLLECTION_TYPES, is_collection, union_values

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Generic Type Variables ---
M = TypeVar("M")

OPTIONS = (
    "reload",
    "offset",
    "limit",
    "order",
    "add_reversed",
    "fields",
    "links",
    "conditions",
    "unique",
)

_BOOLEAN_OPTIONS = ("reload", "unique", "add_reversed")
_PATH_PATTERN = re.compile(r"\w\.\w")

# Map operator strings carried by OperatorClause to enum members
_OPERATOR_MAP = {op.value: op for op in Operator if op is not Operator.RAW}
_SORT_MAP = {order.value: order for order in SortOrder}


# --- Helper Functions ---
def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_half_open(value: Any) -> bool:
    return isinstance(value, range) or (isinstance(value, Range) and value.exclude_end)


def _range_bounds(value: Union[range, Range]) -> Tuple[Any, Any]:
    """
    Endpoints the executor binds for a half-open range filter.

    Integer ranges bind their first and last members; a half-open ``Range``
    of other values binds its start and its (excluded) end.
    """
    if isinstance(value, Range):
        if isinstance(value.end, int) and not isinstance(value.end, bool):
            return value.start, value.end - 1
        return value.start, value.end
    if len(value):
        return value[0], value[-1]
    return value.start, value.stop


def _same_conditions(left: List[ConditionLike], right: List[ConditionLike]) -> bool:
    """True when both lists hold equal conditions, in any order."""
    if len(left) != len(right):
        return False
    unmatched = list(right)
    for condition in left:
        for position, candidate in enumerate(unmatched):
            if condition == candidate:
                del unmatched[position]
                break
        else:
            return False
    return True


# --- Query Descriptor ---
class Query(Generic[M]):
    """
    Describes a read request against a repository: filters, ordering,
    projection, joins and pagination.

    Built once from loosely typed options, then combined with other
    queries through ``update`` (in place) or ``merge`` (on a clone).

    Example:
        query = Query(repository, User, {"age": 30, "order": ["-name"]})
        narrower = query.merge({OperatorClause("age", "gt"): 18, "limit": 10})
    """

    repository: Repository
    schema: SchemaAdapter
    model: Any
    reload: bool
    unique: bool
    offset: int
    limit: Optional[int]
    order: List[Direction]
    add_reversed: bool
    fields: List[Union[SchemaField, OperatorClause]]
    links: List[Relationship]
    conditions: List[ConditionLike]

    def __init__(
        self,
        repository: Repository,
        model: Any,
        options: Optional[Mapping[Any, Any]] = None,
        **kwargs: Any,
    ):
        if not isinstance(repository, Repository):
            raise TypeError(
                f"repository must be a Repository, got {type(repository).__name__}"
            )
        if options is None:
            options = {}
        elif not isinstance(options, Mapping):
            raise TypeError(f"options must be a mapping, got {type(options).__name__}")

        options = {key: resolve_value(value) for key, value in {**options, **kwargs}.items()}
        schema = repository.schema(model)
        log.debug(f"Building Query for {schema.model_name} with options: {options!r}")
        self._assert_valid_options(options, schema)

        self.repository = repository
        self.schema = schema
        self.model = schema.model

        self.reload = options.get("reload", False)
        self.unique = options.get("unique", False)
        self.offset = options.get("offset", 0)
        self.limit = options.get("limit")
        self.order = list(options.get("order", schema.default_order))
        self.add_reversed = options.get("add_reversed", False)
        self.fields = list(options.get("fields", schema.default_fields))
        self.links = list(options.get("links", []))
        self.conditions = []

        self._normalize_links()
        self._normalize_order()
        self._normalize_fields()

        # treat all non-options as conditions
        for key, value in options.items():
            if not (isinstance(key, str) and key in OPTIONS):
                self.append_condition(key, value)

        conditions = options.get("conditions")
        if isinstance(conditions, Mapping):
            for key, value in conditions.items():
                self.append_condition(key, value)
        elif conditions is not None:
            raw_text, *bind_values = conditions
            self.conditions.append(RawCondition(raw_text, tuple(bind_values)))

        log.debug(f"Built {self!r}")

    # --- Validation ---

    @staticmethod
    def _assert_valid_options(options: Mapping[Any, Any], schema: SchemaAdapter) -> None:
        """Raises InvalidOptionError for the first invalid recognized option."""
        for attribute, value in options.items():
            if not isinstance(attribute, str):
                continue

            if attribute in _BOOLEAN_OPTIONS:
                if value is not True and value is not False:
                    raise InvalidOptionError(
                        f"options[{attribute!r}] must be True or False, but was {value!r}"
                    )

            elif attribute == "offset":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise InvalidOptionError(
                        f"options['offset'] must be an int, but was {type(value).__name__}"
                    )
                if value < 0:
                    raise InvalidOptionError(
                        f"options['offset'] must be greater than or equal to 0, but was {value!r}"
                    )

            elif attribute == "limit":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise InvalidOptionError(
                        f"options['limit'] must be an int, but was {type(value).__name__}"
                    )
                if value < 1:
                    raise InvalidOptionError(
                        f"options['limit'] must be greater than or equal to 1, but was {value!r}"
                    )

            elif attribute == "fields":
                if not _is_sequence(value):
                    raise InvalidOptionError(
                        f"options['fields'] must be a list, but was {type(value).__name__}"
                    )
                if not value and options.get("unique", False) is False:
                    raise InvalidOptionError(
                        "options['fields'] cannot be empty if options['unique'] is False"
                    )

            elif attribute == "order":
                if not _is_sequence(value):
                    raise InvalidOptionError(
                        f"options['order'] must be a list, but was {type(value).__name__}"
                    )
                fields = options.get("fields", schema.default_fields)
                if (
                    not value
                    and _is_sequence(fields)
                    and any(not isinstance(f, OperatorClause) for f in fields)
                ):
                    raise InvalidOptionError(
                        "options['order'] cannot be empty if fields contains a non-computed field"
                    )

            elif attribute == "links":
                if not _is_sequence(value):
                    raise InvalidOptionError(
                        f"options['links'] must be a list, but was {type(value).__name__}"
                    )
                if not value:
                    raise InvalidOptionError("options['links'] cannot be empty")

            elif attribute == "conditions":
                if not isinstance(value, Mapping) and not _is_sequence(value):
                    raise InvalidOptionError(
                        "options['conditions'] must be a mapping or a list, "
                        f"but was {type(value).__name__}"
                    )
                if not value:
                    raise InvalidOptionError("options['conditions'] cannot be empty")
                if _is_sequence(value) and not isinstance(value[0], str):
                    raise InvalidOptionError(
                        "options['conditions'] list must start with the raw query text, "
                        f"but started with {value[0]!r}"
                    )

    def _assert_valid_other(self, other: "Query") -> None:
        if other.repository != self.repository:
            raise IncompatibleMergeError(
                f"other Query must be for the {self.repository.name!r} repository, "
                f"not {other.repository.name!r}"
            )
        if other.model != self.model:
            raise IncompatibleMergeError(
                f"other Query must be for the {self.schema.model_name} model, "
                f"not {other.schema.model_name}"
            )

    # --- Normalization ---

    def _resolve_field(self, name: str, option: str) -> SchemaField:
        schema_field = self.schema.field(name)
        if schema_field is None:
            raise UnresolvedReferenceError(
                f"options[{option!r}] entry {name!r} does not map to a field "
                f"of {self.schema.model_name}"
            )
        return schema_field

    def _resolve_path(self, path: FieldPath, option: str) -> SchemaField:
        if path.field is None:
            raise InvalidOptionError(
                f"options[{option!r}] entry {path!r} ends at a relationship, not a field"
            )
        self._add_links(path)
        return path.field

    def _resolve_target(self, target: Any, option: str) -> Optional[SchemaField]:
        """
        Resolves a field, path, name or dotted path used in order or fields.

        Returns None for shapes that name no field.
        """
        if isinstance(target, SchemaField):
            return target
        if isinstance(target, FieldPath):
            return self._resolve_path(target, option)
        if isinstance(target, str):
            if _PATH_PATTERN.search(target):
                return self._resolve_path(self.schema.path(target), option)
            return self._resolve_field(target, option)
        return None

    def _normalize_order(self) -> None:
        """Converts order entries to Direction."""
        normalized = []
        for entry in self.order:
            if isinstance(entry, Direction):
                normalized.append(entry)
                continue
            target, sort = entry, SortOrder.ASC
            if isinstance(entry, OperatorClause):
                sort = _SORT_MAP.get(entry.operator)
                if sort is None:
                    raise InvalidOptionError(
                        f"options['order'] entry {entry!r} must sort asc or desc, "
                        f"not {entry.operator!r}"
                    )
                target = entry.target
            elif isinstance(entry, str) and entry.startswith("-"):
                target, sort = entry[1:], SortOrder.DESC
            schema_field = self._resolve_target(target, "order")
            if schema_field is None:
                raise InvalidOptionError(f"options['order'] entry {entry!r} not supported")
            normalized.append(Direction(schema_field, sort))
        self.order = normalized

    def _normalize_fields(self) -> None:
        """Converts field names and paths to SchemaField; computed projections pass through."""
        normalized = []
        for entry in self.fields:
            if isinstance(entry, OperatorClause):
                normalized.append(entry)
                continue
            schema_field = self._resolve_target(entry, "fields")
            if schema_field is None:
                raise InvalidOptionError(f"options['fields'] entry {entry!r} not supported")
            normalized.append(schema_field)
        self.fields = normalized

    def _normalize_links(self) -> None:
        """Converts relationship names to Relationship."""
        normalized = []
        for link in self.links:
            if isinstance(link, Relationship):
                normalized.append(link)
            elif isinstance(link, str):
                relationship = self.schema.relationship(link)
                if relationship is None:
                    raise UnresolvedReferenceError(
                        f"options['links'] entry {link!r} does not map to a relationship "
                        f"of {self.schema.model_name}"
                    )
                normalized.append(relationship)
            else:
                raise InvalidOptionError(f"options['links'] entry {link!r} not supported")
        self.links = normalized

    def _add_links(self, path: FieldPath) -> None:
        """Registers the relationships crossed by ``path``."""
        missing = [r for r in path.relationships if r not in self.links]
        if missing:
            log.debug(f"Adding links for path {path.dotted!r}: {missing!r}")
            self.links = self.links + missing

    # --- Conditions ---

    def append_condition(self, clause: Any, value: Any) -> None:
        """
        Adds one condition for ``clause`` (a field, path, operator wrapper,
        name or dotted path) and ``value``.

        A ``not`` wrapper with an empty collection filters nothing and is
        dropped.
        """
        operator = Operator.EQ
        target = clause
        value = resolve_value(value)

        if isinstance(clause, OperatorClause):
            operator = _OPERATOR_MAP.get(clause.operator)
            if operator is None:
                raise UnsupportedClauseError(
                    f"Operator {clause.operator!r} in {clause!r} is not a condition operator"
                )
            if operator is Operator.NOT and is_collection(value) and not value:
                log.debug(f"Skipping vacuous condition {clause!r} with empty {value!r}")
                return
            target = clause.target

        schema_field = self._resolve_condition_target(target, clause)
        value = self._dump_value(operator, schema_field, value)
        condition = Condition(operator, schema_field, value)
        log.debug(f"Appending {condition!r}")
        self.conditions.append(condition)

    def _resolve_condition_target(self, target: Any, clause: Any) -> SchemaField:
        if isinstance(target, SchemaField):
            return target
        if isinstance(target, FieldPath):
            if target.field is None:
                raise UnsupportedClauseError(
                    f"Clause {clause!r} ends at a relationship, not a field"
                )
            self._add_links(target)
            return target.field
        if isinstance(target, str):
            if _PATH_PATTERN.search(target):
                return self._resolve_condition_target(self.schema.path(target), clause)
            schema_field = self.schema.field(target)
            if schema_field is None:
                raise UnresolvedReferenceError(
                    f"Clause {clause!r} does not map to a field of {self.schema.model_name}"
                )
            return schema_field
        raise UnsupportedClauseError(f"Condition type {clause!r} not supported")

    @staticmethod
    def _dump_value(operator: Operator, schema_field: SchemaField, value: Any) -> Any:
        """Applies the field's dump hook; candidate collections become lists."""
        if operator in (Operator.IN, Operator.NOT) and isinstance(
            value, (set, frozenset, tuple)
        ):
            value = list(value)
        if not schema_field.custom or isinstance(value, Query):
            return value
        if isinstance(value, COLLECTION_TYPES):
            return [schema_field.dump(item) for item in value]
        if isinstance(value, Range):
            return Range(
                schema_field.dump(value.start),
                schema_field.dump(value.end),
                value.exclude_end,
            )
        return schema_field.dump(value)

    # --- Merging ---

    def update(
        self, other: Union["Query", Mapping[Any, Any], None] = None, **options: Any
    ) -> "Query[M]":
        """
        Folds ``other`` (a Query or options) into this query in place.

        Scalar options are taken from ``other`` only when they differ from
        their defaults; conditions are merged, resolving conflicts on the
        same field and operator.
        """
        if other is None:
            other = options
        elif options:
            if not isinstance(other, Mapping):
                raise TypeError("update() takes either a Query or options, not both")
            other = {**other, **options}
        if not isinstance(other, (Query, Mapping)):
            raise TypeError(
                f"other must be a Query or a mapping, got {type(other).__name__}"
            )

        if isinstance(other, Mapping):
            if not other:
                return self
            other = Query(self.repository, self.schema, other)
        else:
            self._assert_valid_other(other)

        if self == other:
            log.debug("update() with an equal query; nothing to do")
            return self

        # computed before any attribute changes so a failure leaves self intact
        conditions = self._merge_conditions(other.conditions)
        order = other.order if other.order != self.schema.default_order else self.order
        fields = other.fields if other.fields != self.schema.default_fields else self.fields
        if not order and any(not isinstance(f, OperatorClause) for f in fields):
            raise InvalidOptionError(
                "order cannot be empty if fields contains a non-computed field; "
                f"merged fields are {fields!r}"
            )

        # TODO: distinguish options other set explicitly from options left at
        # their defaults so an explicit reset to the default is honored
        if other.reload:
            self.reload = other.reload
        if other.unique:
            self.unique = other.unique
        if other.reload or other.offset != 0:
            self.offset = other.offset
        if other.limit is not None:
            self.limit = other.limit
        if other.add_reversed:
            self.add_reversed = other.add_reversed
        if other.links:
            self.links = other.links
        self.order = order
        self.fields = fields
        self.conditions = conditions

        log.debug(f"Updated {self!r}")
        return self

    def merge(
        self, other: Union["Query", Mapping[Any, Any], None] = None, **options: Any
    ) -> "Query[M]":
        """Like ``update``, but on a clone; the receiver is left untouched."""
        return self.clone().update(other, **options)

    def _merge_conditions(self, other_conditions: List[ConditionLike]) -> List[ConditionLike]:
        merged = list(self.conditions)

        # index by field and operator to avoid nested looping
        index: Dict[Tuple[Any, Operator], int] = {}
        for position, condition in enumerate(merged):
            if isinstance(condition, RawCondition):
                continue
            index[(condition.field, condition.operator)] = position

        for other_condition in other_conditions:
            if isinstance(other_condition, RawCondition):
                merged.append(other_condition)
                continue

            position = index.get((other_condition.field, other_condition.operator))
            if position is None:
                merged.append(other_condition)
                continue

            existing = merged[position]
            if existing.value == other_condition.value:
                continue
            value = self._resolve_conflict(existing, other_condition.value)
            log.debug(f"Resolved {existing!r} against {other_condition!r} -> {value!r}")
            merged[position] = existing.with_value(value)

        return merged

    @staticmethod
    def _resolve_conflict(existing: Condition, other_value: Any) -> Any:
        operator, value = existing.operator, existing.value
        try:
            if operator in (Operator.GT, Operator.GTE):
                return min(value, other_value)
            if operator in (Operator.LT, Operator.LTE):
                return max(value, other_value)
        except TypeError as e:
            raise IncompatibleMergeError(
                f"Cannot merge {existing!r} with value {other_value!r}: {e}"
            ) from e
        if operator in (Operator.NOT, Operator.IN):
            if is_collection(value):
                return union_values(value, other_value)
            if is_collection(other_value):
                return union_values(other_value, value)
        # eq, like and scalar not/in: the other value wins
        return other_value

    def merge_subquery(
        self, operator: Union[Operator, str], field: SchemaField, nested: "Query"
    ) -> List[ConditionLike]:
        """
        Replaces the condition ``(operator, field, nested)`` with the
        conditions of ``nested``, at the same position.
        """
        if not isinstance(nested, Query):
            raise TypeError(f"nested must be a Query, got {type(nested).__name__}")
        if isinstance(operator, str):
            operator = Operator(operator)

        subquery_condition = Condition(operator, field, nested)
        spliced: List[ConditionLike] = []
        for condition in self.conditions:
            if condition == subquery_condition:
                log.debug(f"Splicing {len(nested.conditions)} conditions from subquery")
                spliced.extend(nested.conditions)
            else:
                spliced.append(condition)
        self.conditions = spliced
        return self.conditions

    # --- Ordering ---

    def reverse(self) -> "Query[M]":
        """Returns a clone sorted the opposite way."""
        return self.clone().reverse_in_place()

    def reverse_in_place(self) -> "Query[M]":
        self.order = [direction.reverse() for direction in self.order]
        return self

    # --- Inspection ---

    @property
    def inheritance_property(self) -> Optional[SchemaField]:
        """The discriminator field among ``fields``, if any."""
        return next(
            (f for f in self.fields if isinstance(f, SchemaField) and f.discriminator),
            None,
        )

    @property
    def inheritance_property_index(self) -> Optional[int]:
        discriminator = self.inheritance_property
        return None if discriminator is None else self.fields.index(discriminator)

    def key_property_indexes(self) -> List[Optional[int]]:
        """Positions of the model's key fields within ``fields``."""
        return [
            self.fields.index(key_field) if key_field in self.fields else None
            for key_field in self.schema.key
        ]

    def bind_values(self) -> List[Any]:
        """Condition values in the order the executor binds them."""
        values: List[Any] = []
        for condition in self.conditions:
            if isinstance(condition, RawCondition):
                values.extend(condition.bind_values)
                continue
            if condition.operator in (Operator.EQ, Operator.NOT) and _is_half_open(
                condition.value
            ):
                values.extend(_range_bounds(condition.value))
            else:
                values.append(condition.value)
        return values

    # --- Copying and Equality ---

    def clone(self) -> "Query[M]":
        """Returns a copy owning its own condition list."""
        return copy.copy(self)

    def __copy__(self) -> "Query[M]":
        duplicate = self.__class__.__new__(self.__class__)
        duplicate.__dict__.update(self.__dict__)
        # conditions are immutable; other collections are only ever replaced
        duplicate.conditions = list(self.conditions)
        return duplicate

    def __eq__(self, other: Any) -> bool:
        if self is other:
            return True
        if not isinstance(other, Query):
            return NotImplemented
        return (
            self.model == other.model
            and self.reload == other.reload
            and self.unique == other.unique
            and self.offset == other.offset
            and self.limit == other.limit
            and self.add_reversed == other.add_reversed
            # order is significant, so these compare positionally
            and self.order == other.order
            and self.fields == other.fields
            and self.links == other.links
            and _same_conditions(self.conditions, other.conditions)
        )

    __hash__ = None  # mutable through update()

    def __repr__(self) -> str:
        parts = [
            f"repository={self.repository.name!r}",
            f"model={self.schema.model_name}",
            f"fields={self.fields!r}",
            f"links={self.links!r}",
            f"conditions={self.conditions!r}",
            f"order={self.order!r}",
            f"limit={self.limit!r}",
            f"offset={self.offset!r}",
            f"reload={self.reload!r}",
            f"unique={self.unique!r}",
        ]
        if self.add_reversed:
            parts.append(f"add_reversed={self.add_reversed!r}")
        return f"Query({', '.join(parts)})"
