# src/query_descriptor/base/repository.py
import logging
from typing import Any, Dict, Type

from .schema import ModelSchema, SchemaAdapter

log = logging.getLogger(__name__)


class Repository:
    """
    Named storage context a query is bound to.

    Queries built against different repositories never merge. A repository
    may register a custom schema adapter for a model; otherwise the model's
    shared ``ModelSchema`` is used.
    """

    def __init__(self, name: str = "default"):
        if not isinstance(name, str) or not name:
            raise ValueError("Repository name must be a non-empty string.")
        self.name = name
        self._adapters: Dict[Any, SchemaAdapter] = {}

    def register(self, model: Type, adapter: SchemaAdapter) -> None:
        """Uses ``adapter`` for ``model`` in queries bound to this repository."""
        if not isinstance(adapter, SchemaAdapter):
            raise TypeError(
                f"adapter must implement SchemaAdapter, got {type(adapter).__name__}"
            )
        log.info(f"Repository '{self.name}': registered {adapter!r} for {model!r}")
        self._adapters[model] = adapter

    def schema(self, model: Any) -> SchemaAdapter:
        """Returns the adapter describing ``model`` within this repository."""
        if model in self._adapters:
            return self._adapters[model]
        if isinstance(model, SchemaAdapter) and not isinstance(model, type):
            return model
        return ModelSchema.for_model(model)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Repository):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"Repository({self.name!r})"
