import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)

COLLECTION_TYPES = (list, tuple, set, frozenset)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to storage-compatible formats.

    Used as the default dump for embedded (inline, model-typed) field values
    so conditions carry plain data the executor can bind.
    It handles:
    - Pydantic BaseModel instances with field aliases
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item)
    - Pydantic URL types (converting to strings)

    Args:
        data: The data to convert

    Returns:
        The converted data
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        try:
            # by_alias keeps the stored keys aligned with the model's aliases
            serialized = data.model_dump(mode="json", by_alias=True)
        except Exception as e:
            logger.debug(f"Error using model_dump(mode='json', by_alias=True): {e}")
            serialized = data.model_dump(by_alias=True)
        return prepare_for_storage(serialized)

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, list):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, tuple):
        return tuple(prepare_for_storage(item) for item in data)

    if isinstance(data, (set, frozenset)):
        return [prepare_for_storage(item) for item in data]

    if data.__class__.__module__ == "pydantic.networks":
        return str(data)

    return data


def is_collection(value: Any) -> bool:
    """True for the value shapes treated as sets of candidates (in / not in)."""
    return isinstance(value, COLLECTION_TYPES)


def union_values(left: Any, right: Any) -> List[Any]:
    """
    Union of two candidate collections, keeping first-seen order.

    Scalars are treated as one-element collections. Members need not be
    hashable.
    """
    merged: List[Any] = []
    for value in _as_iterable(left), _as_iterable(right):
        for item in value:
            if item not in merged:
                merged.append(item)
    return merged


def _as_iterable(value: Any) -> Iterable[Any]:
    return value if is_collection(value) else (value,)
