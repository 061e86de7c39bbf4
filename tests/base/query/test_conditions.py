# tests/base/query/test_conditions.py
import pytest

from query_descriptor.base.clauses import (
    Condition,
    Deferred,
    Operator,
    OperatorClause,
    Range,
)
from query_descriptor.base.exceptions import UnresolvedReferenceError, UnsupportedClauseError
from query_descriptor.base.query import Query

from tests.base.conftest import Author, Coordinates, Tag, cond


# --- Clause Dispatch ---

def test_name_means_equality(query, articles):
    assert query({"title": "Hello"}).conditions == [
        cond(Operator.EQ, articles.field("title"), "Hello")
    ]


def test_keyword_shorthand(query, articles):
    assert query(title="Hello").conditions == [cond(Operator.EQ, articles.field("title"), "Hello")]


def test_schema_field_key(query, articles):
    views = articles.field("views")
    assert query({views: 3}).conditions == [cond(Operator.EQ, views, 3)]


def test_alias_resolves_to_field(query, articles):
    assert query({"permalink": "hello-world"}).conditions == [
        cond(Operator.EQ, articles.field("slug"), "hello-world")
    ]


operator_params = [
    ("gt", Operator.GT),
    ("gte", Operator.GTE),
    ("lt", Operator.LT),
    ("lte", Operator.LTE),
    ("not", Operator.NOT),
    ("like", Operator.LIKE),
    ("eq", Operator.EQ),
]


@pytest.mark.parametrize("name, operator", operator_params, ids=[p[0] for p in operator_params])
def test_operator_wrappers(query, articles, name, operator):
    q = query({OperatorClause("views", name): 10})
    assert q.conditions == [cond(operator, articles.field("views"), 10)]


def test_field_shorthand_wrapper(query, articles):
    rating = articles.field("rating")
    assert query({rating.gte(): 4.5}).conditions == [cond(Operator.GTE, rating, 4.5)]


def test_in_accepts_any_collection(query, articles):
    q = query({OperatorClause("views", "in"): (1, 2)})
    assert q.conditions == [cond(Operator.IN, articles.field("views"), [1, 2])]


def test_unknown_operator(query):
    with pytest.raises(UnsupportedClauseError, match="'between'"):
        query({OperatorClause("views", "between"): 1})


def test_sort_wrapper_is_not_a_condition(query):
    with pytest.raises(UnsupportedClauseError, match="not a condition operator"):
        query({OperatorClause("views", "desc"): 1})


def test_unknown_name(query):
    with pytest.raises(UnresolvedReferenceError, match="does not map to a field of Article"):
        query({"nope": 1})


def test_unsupported_clause_type(query):
    with pytest.raises(UnsupportedClauseError, match="Condition type 42 not supported"):
        query({42: 1})


def test_unsupported_clause_error_is_a_type_error(query):
    with pytest.raises(TypeError):
        query({42: 1})


# --- Negation With Empty Collections ---

@pytest.mark.parametrize("empty", [[], (), set()], ids=["list", "tuple", "set"])
def test_not_with_empty_collection_adds_nothing(query, empty):
    q = query()
    q.append_condition(OperatorClause("views", "not"), empty)
    assert q.conditions == []


def test_not_with_values_is_kept(query, articles):
    q = query()
    q.append_condition(OperatorClause("views", "not"), {3})
    assert q.conditions == [cond(Operator.NOT, articles.field("views"), [3])]


def test_in_with_empty_collection_is_kept(query, articles):
    q = query({OperatorClause("views", "in"): []})
    assert q.conditions == [cond(Operator.IN, articles.field("views"), [])]


# --- Paths ---

def test_dotted_name_registers_link(query, articles, authors):
    q = query({"author.name": "Ada"})
    assert q.conditions == [cond(Operator.EQ, authors.field("name"), "Ada")]
    assert q.links == [articles.relationship("author")]


def test_path_object_registers_link(query, articles, authors):
    q = query({articles.fields.author.name: "Ada"})
    assert q.conditions == [cond(Operator.EQ, authors.field("name"), "Ada")]
    assert q.links == [articles.relationship("author")]


def test_wrapped_path(query, articles):
    q = query({articles.fields.tags.label.in_(): ["python", "sql"]})
    tags = articles.relationship("tags")
    assert q.conditions == [
        cond(Operator.IN, tags.target_schema.field("label"), ["python", "sql"])
    ]
    assert q.links == [tags]


def test_two_hop_path_registers_each_link_once(query, articles, authors):
    q = query({"author.articles.title": "Hello", "author.name": "Ada"})
    assert q.links == [articles.relationship("author"), authors.relationship("articles")]
    assert len(q.conditions) == 2


def test_path_links_follow_explicit_links(query, articles):
    q = query({"links": ["tags"], "author.name": "Ada"})
    assert q.links == [articles.relationship("tags"), articles.relationship("author")]


def test_path_ending_at_relationship(query, articles):
    with pytest.raises(UnsupportedClauseError, match="ends at a relationship"):
        query({articles.fields.author: 1})


def test_dotted_name_with_unknown_relationship(query):
    with pytest.raises(UnresolvedReferenceError, match="'editor' does not map"):
        query({"editor.name": "Ada"})


def test_append_condition_keeps_links_of_clones_apart(query, articles):
    original = query()
    copy = original.clone()
    copy.append_condition("author.name", "Ada")
    assert copy.links == [articles.relationship("author")]
    assert original.links == []
    assert original.conditions == []


# --- Values ---

def test_deferred_value(query, articles):
    q = query()
    q.append_condition("views", Deferred(lambda: 5))
    assert q.conditions == [cond(Operator.EQ, articles.field("views"), 5)]


def test_dump_hook_applies_to_scalar(repository, authors):
    q = Query(repository, Author, {"email": "Ada@Example.org"})
    assert q.conditions == [cond(Operator.EQ, authors.field("email"), "ada@example.org")]


def test_dump_hook_applies_to_each_member(repository, authors):
    q = Query(repository, Author, {authors.field("email").in_(): ("A@X.org", "B@Y.org")})
    assert q.conditions[0].value == ["a@x.org", "b@y.org"]


def test_dump_hook_applies_to_range_endpoints(repository, authors):
    q = Query(repository, Author, {"email": Range("A", "C", exclude_end=True)})
    assert q.conditions[0].value == Range("a", "c", exclude_end=True)


def test_embedded_value_is_dumped(query, articles):
    q = query({"location": Coordinates(lat=1.0, lng=2.0)})
    assert q.conditions == [cond(Operator.EQ, articles.field("location"), {"lat": 1.0, "lng": 2.0})]


def test_nested_query_value_is_not_dumped(repository, authors):
    nested = Query(repository, Tag, {"label": "python"})
    q = Query(repository, Author, {authors.field("email").in_(): nested})
    assert q.conditions == [Condition(Operator.IN, authors.field("email"), nested)]
