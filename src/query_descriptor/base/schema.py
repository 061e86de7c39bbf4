# src/query_descriptor/base/schema.py
import logging
from dataclasses import dataclass, field, is_dataclass
from enum import Enum
from inspect import get_annotations, isclass
from types import SimpleNamespace
from typing import (
    Annotated,
    Any,
    Callable,
    ClassVar,
    Dict,
    Generic,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
    runtime_checkable,
)

from pydantic import BaseModel

from .clauses import ClauseTarget, Direction, FieldPath, SortOrder
from .exceptions import UnresolvedReferenceError
from .utils import prepare_for_storage

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Generic Type Variables ---
M = TypeVar("M")

_SEQUENCE_ORIGINS = (list, List, set, Set, tuple, Tuple, frozenset, Sequence)


# --- Helper Functions ---
def _is_none_type(t: Optional[Type]) -> bool:
    return t is type(None)


def _unwrap_optional(t: Any) -> Any:
    """Returns X for Optional[X], otherwise the type unchanged."""
    if get_origin(t) is Union:
        non_none = [arg for arg in get_args(t) if not _is_none_type(arg)]
        if len(non_none) == 1:
            return non_none[0]
    return t


def _is_model_class(t: Any) -> bool:
    """True for classes that describe records: pydantic models, dataclasses, annotated classes."""
    if not isclass(t) or issubclass(t, Enum):
        return False
    if issubclass(t, BaseModel) or is_dataclass(t):
        return True
    return t.__module__ != "builtins" and bool(get_annotations(t))


# --- Field Declarations ---
@dataclass(frozen=True)
class FieldSpec:
    """
    Per-field metadata, attached with ``typing.Annotated``.

    ``key`` marks identity fields, ``lazy`` keeps the field out of the
    default projection, ``discriminator`` marks the field that names the
    concrete class of a row, ``embedded`` stores a model-typed value inline
    instead of treating it as a relationship, and ``dump`` converts
    condition values before they are stored.
    """

    key: bool = False
    lazy: bool = False
    discriminator: bool = False
    embedded: bool = False
    dump: Optional[Callable[[Any], Any]] = None


@dataclass(frozen=True)
class SchemaField(ClauseTarget):
    """A resolved field of a model. Equal when model and name match."""

    model: Any
    name: str
    type: Any = field(default=Any, compare=False)
    spec: FieldSpec = field(default_factory=FieldSpec, compare=False)

    @property
    def key(self) -> bool:
        return self.spec.key

    @property
    def lazy(self) -> bool:
        return self.spec.lazy

    @property
    def discriminator(self) -> bool:
        return self.spec.discriminator

    @property
    def custom(self) -> bool:
        """Whether condition values need converting before storage."""
        return self.spec.dump is not None or self.spec.embedded

    def dump(self, value: Any) -> Any:
        if self.spec.dump is not None:
            return self.spec.dump(value)
        if self.spec.embedded:
            return prepare_for_storage(value)
        return value

    def __repr__(self) -> str:
        return f"SchemaField({getattr(self.model, '__name__', self.model)}.{self.name})"


@dataclass(eq=False)
class Relationship:
    """A named link from one model to another. Compared by identity."""

    name: str
    source_model: Any
    target_model: Any
    many: bool = False

    @property
    def source_schema(self) -> "ModelSchema":
        return ModelSchema.for_model(self.source_model)

    @property
    def target_schema(self) -> "ModelSchema":
        return ModelSchema.for_model(self.target_model)

    def __repr__(self) -> str:
        arrow = "->*" if self.many else "->"
        return (
            f"Relationship({self.source_model.__name__}.{self.name} "
            f"{arrow} {self.target_model.__name__})"
        )


# --- Adapter Interface ---
@runtime_checkable
class SchemaAdapter(Protocol):
    """What a query needs to know about a model."""

    model: Any

    @property
    def model_name(self) -> str: ...

    def field(self, name: str) -> Optional[SchemaField]: ...

    def relationship(self, name: str) -> Optional[Relationship]: ...

    def path(self, dotted: str) -> FieldPath: ...

    @property
    def key(self) -> List[SchemaField]: ...

    @property
    def default_order(self) -> List[Direction]: ...

    @property
    def default_fields(self) -> List[SchemaField]: ...


# --- Model Schema ---
_SCHEMA_CACHE: Dict[Type, "ModelSchema"] = {}


class ModelSchema(Generic[M]):
    """
    Introspects a model class into fields and relationships.

    Annotations whose (unwrapped) type is itself a model class become
    relationships; everything else becomes a field. Model-level settings
    are read from ``__key__`` and ``__default_order__`` class attributes.
    Introspection is deferred until first use so models may reference
    each other by forward reference.
    """

    model: Type[M]
    _fields: Optional[Dict[str, SchemaField]]
    _relationships: Optional[Dict[str, Relationship]]
    _aliases: Dict[str, str]

    def __init__(self, model_type: Type[M]):
        log.debug(f"Initializing ModelSchema for type: {model_type!r}")
        if not isclass(model_type):
            log.error(f"Init failed: {model_type!r} is not a class")
            raise TypeError(f"model_type must be a class, received {type(model_type)}.")
        self.model = model_type
        self._fields = None
        self._relationships = None
        self._aliases = {}
        self._proxy: Optional[SimpleNamespace] = None

    @classmethod
    def for_model(cls, model_type: Type[M]) -> "ModelSchema[M]":
        """Returns the shared schema for ``model_type``."""
        schema = _SCHEMA_CACHE.get(model_type)
        if schema is None:
            schema = cls(model_type)
            _SCHEMA_CACHE[model_type] = schema
        return schema

    @property
    def model_name(self) -> str:
        return self.model.__name__

    # --- Introspection ---

    def _get_type_hints(self) -> Dict[str, Any]:
        try:
            return get_type_hints(self.model, include_extras=True)
        except NameError as e:
            raise TypeError(
                f"Unresolved forward ref in {self.model_name}? Error: {e}"
            ) from e
        except Exception as e:
            raise TypeError(f"Could not get hints for {self.model_name}: {e}") from e

    def _get_field_aliases(self) -> Dict[str, str]:
        aliases = {}
        if hasattr(self.model, "model_fields"):
            for name, info in self.model.model_fields.items():
                if info.alias and info.alias != name:
                    aliases[info.alias] = name
        return aliases

    def _declared_fields(self) -> Dict[str, Tuple[Any, List[Any]]]:
        """Maps each declared name to its type and its Annotated metadata."""
        if hasattr(self.model, "model_fields"):
            if getattr(self.model, "__pydantic_complete__", True) is False:
                log.debug(f"Rebuilding incomplete pydantic model {self.model_name}")
                self.model.model_rebuild()
            return {
                name: (info.annotation, list(info.metadata))
                for name, info in self.model.model_fields.items()
            }

        declared = {}
        for name, hint in self._get_type_hints().items():
            if name.startswith("_") or get_origin(hint) is ClassVar:
                continue
            extras: List[Any] = []
            if get_origin(hint) is Annotated:
                hint, *extras = get_args(hint)
            declared[name] = (hint, extras)
        return declared

    def _introspect(self) -> None:
        if self._fields is not None:
            return
        declared = self._declared_fields()
        log.debug(f"Introspecting {self.model_name}: {list(declared)}")
        fields: Dict[str, SchemaField] = {}
        relationships: Dict[str, Relationship] = {}

        for name, (hint, extras) in declared.items():
            spec = next((e for e in extras if isinstance(e, FieldSpec)), FieldSpec())
            target, many = self._relationship_target(hint)
            if target is not None and not spec.embedded:
                relationships[name] = Relationship(name, self.model, target, many)
                log.debug(f"  Relationship '{name}' -> {target.__name__} (many={many})")
            else:
                fields[name] = SchemaField(self.model, name, hint, spec)
                log.debug(f"  Field '{name}': {hint!r} ({spec})")

        self._aliases = self._get_field_aliases()
        self._fields = fields
        self._relationships = relationships
        log.info(
            f"Schema for {self.model_name}: {len(fields)} fields, "
            f"{len(relationships)} relationships"
        )

    @staticmethod
    def _relationship_target(hint: Any) -> Tuple[Optional[Type], bool]:
        """Returns (target model, is-collection) if ``hint`` points at a model."""
        hint = _unwrap_optional(hint)
        if _is_model_class(hint):
            return hint, False
        if get_origin(hint) in _SEQUENCE_ORIGINS:
            args = [a for a in get_args(hint) if a is not Ellipsis]
            if len(args) == 1 and _is_model_class(_unwrap_optional(args[0])):
                return _unwrap_optional(args[0]), True
        return None, False

    # --- Lookup ---

    @property
    def fields(self) -> SimpleNamespace:
        """Attribute access to fields and relationship paths: ``schema.fields.age``."""
        if self._proxy is None:
            self._introspect()
            proxy = SimpleNamespace()
            for name, schema_field in self._fields.items():
                setattr(proxy, name, schema_field)
            for name, relationship in self._relationships.items():
                setattr(proxy, name, FieldPath((relationship,)))
            self._proxy = proxy
        return self._proxy

    def field(self, name: str) -> Optional[SchemaField]:
        self._introspect()
        if not isinstance(name, str):
            return None
        return self._fields.get(self._aliases.get(name, name))

    def relationship(self, name: str) -> Optional[Relationship]:
        self._introspect()
        if not isinstance(name, str):
            return None
        return self._relationships.get(name)

    def path(self, dotted: str) -> FieldPath:
        """Builds a path from ``relationship[.relationship...][.field]``."""
        head, *rest = dotted.split(".")
        relationship = self.relationship(head)
        if relationship is None:
            raise UnresolvedReferenceError(
                f"{head!r} does not map to a relationship of {self.model_name}"
            )
        path = FieldPath((relationship,))
        for part in rest:
            path = path.extend(part)
        return path

    @property
    def all_fields(self) -> List[SchemaField]:
        self._introspect()
        return list(self._fields.values())

    @property
    def relationships(self) -> List[Relationship]:
        self._introspect()
        return list(self._relationships.values())

    # --- Defaults ---

    @property
    def key(self) -> List[SchemaField]:
        self._introspect()
        marked = [f for f in self._fields.values() if f.key]
        if marked:
            return marked
        declared = getattr(self.model, "__key__", None)
        if declared:
            return [self._require_field(name, "__key__") for name in declared]
        if "id" in self._fields:
            return [self._fields["id"]]
        fallback = self.all_fields[:1]
        log.warning(
            f"{self.model_name} declares no key and has no 'id' field; "
            f"keying on {[f.name for f in fallback]}"
        )
        return fallback

    @property
    def default_order(self) -> List[Direction]:
        declared = getattr(self.model, "__default_order__", None)
        if declared is None:
            return [Direction(key_field) for key_field in self.key]
        order = []
        for entry in declared:
            name, sort = entry, SortOrder.ASC
            if entry.startswith("-"):
                name, sort = entry[1:], SortOrder.DESC
            order.append(Direction(self._require_field(name, "__default_order__"), sort))
        return order

    @property
    def default_fields(self) -> List[SchemaField]:
        return [f for f in self.all_fields if not f.lazy]

    def _require_field(self, name: str, setting: str) -> SchemaField:
        schema_field = self.field(name)
        if schema_field is None:
            raise UnresolvedReferenceError(
                f"{self.model_name}.{setting} entry {name!r} does not map to a field"
            )
        return schema_field

    def __repr__(self) -> str:
        return f"ModelSchema({self.model_name})"
