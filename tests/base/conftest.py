# tests/base/conftest.py
from dataclasses import dataclass
from typing import Annotated, ClassVar, List, Optional, Tuple

import pytest
from pydantic import BaseModel, Field as PydanticField

from query_descriptor.base.clauses import Condition, Operator
from query_descriptor.base.query import Query
from query_descriptor.base.repository import Repository
from query_descriptor.base.schema import _SCHEMA_CACHE, FieldSpec, ModelSchema


# --- Test Models ---
class Coordinates(BaseModel):
    lat: float
    lng: float


class Tag(BaseModel):
    id: int
    label: str


class Author(BaseModel):
    __default_order__: ClassVar[Tuple[str, ...]] = ("name",)

    id: Annotated[int, FieldSpec(key=True)]
    name: str
    email: Annotated[Optional[str], FieldSpec(dump=lambda v: v.lower() if v else v)] = None
    bio: Annotated[str, FieldSpec(lazy=True)] = ""
    articles: List["Article"] = []


class Article(BaseModel):
    id: int
    title: str
    kind: Annotated[str, FieldSpec(discriminator=True)] = "Article"
    rating: float = 0.0
    views: int = 0
    slug: str = PydanticField(default="", alias="permalink")
    body: Annotated[str, FieldSpec(lazy=True)] = ""
    location: Annotated[Optional[Coordinates], FieldSpec(embedded=True)] = None
    author: Optional[Author] = None
    tags: List[Tag] = []


Author.model_rebuild()


class Comment:
    """Plain annotated class, introspected without pydantic."""

    __key__ = ("number",)

    number: int
    text: str
    article: Article

    def __init__(self, number=0, text="", article=None):
        self.number = number
        self.text = text
        self.article = article


@dataclass
class Reaction:
    id: int
    emoji: str
    comment: Optional[Comment] = None


# --- Fixtures ---
@pytest.fixture(autouse=True)
def clear_schema_cache():
    _SCHEMA_CACHE.clear()
    yield
    _SCHEMA_CACHE.clear()


@pytest.fixture
def repository() -> Repository:
    return Repository("default")


@pytest.fixture
def other_repository() -> Repository:
    return Repository("archive")


@pytest.fixture
def articles() -> ModelSchema[Article]:
    return ModelSchema.for_model(Article)


@pytest.fixture
def authors() -> ModelSchema[Author]:
    return ModelSchema.for_model(Author)


@pytest.fixture
def query(repository: Repository):
    """Factory building Article queries bound to the default repository."""

    def build(options=None, **kwargs) -> Query[Article]:
        return Query(repository, Article, options, **kwargs)

    return build


# --- Helpers ---
def cond(operator: Operator, schema_field, value) -> Condition:
    return Condition(operator, schema_field, value)
