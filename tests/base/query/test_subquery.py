# tests/base/query/test_subquery.py
import pytest

from query_descriptor.base.clauses import Operator, OperatorClause
from query_descriptor.base.query import Query

from tests.base.conftest import Author, Tag, cond


@pytest.fixture
def nested(repository):
    return Query(repository, Author, {"name": "Ada", "bio": "x"})


def test_splices_nested_conditions_in_place(query, articles, authors, nested):
    q = query({"title": "Hello", OperatorClause("id", "in"): nested, "views": 3})
    result = q.merge_subquery(Operator.IN, articles.field("id"), nested)
    assert result is q.conditions
    assert q.conditions == [
        cond(Operator.EQ, articles.field("title"), "Hello"),
        cond(Operator.EQ, authors.field("name"), "Ada"),
        cond(Operator.EQ, authors.field("bio"), "x"),
        cond(Operator.EQ, articles.field("views"), 3),
    ]


def test_accepts_operator_name(query, articles, nested):
    q = query({OperatorClause("id", "in"): nested})
    q.merge_subquery("in", articles.field("id"), nested)
    assert q.conditions == nested.conditions


def test_equality_subquery(query, articles, repository):
    tags = Query(repository, Tag, {"id": 1})
    q = query({"id": tags})
    q.merge_subquery(Operator.EQ, articles.field("id"), tags)
    assert q.conditions == [cond(Operator.EQ, tags.schema.field("id"), 1)]


def test_without_matching_condition_is_a_no_op(query, articles, nested):
    q = query({"title": "Hello"})
    before = list(q.conditions)
    q.merge_subquery(Operator.IN, articles.field("id"), nested)
    assert q.conditions == before


def test_other_operator_does_not_match(query, articles, nested):
    q = query({OperatorClause("id", "in"): nested})
    q.merge_subquery(Operator.NOT, articles.field("id"), nested)
    assert q.conditions == [cond(Operator.IN, articles.field("id"), nested)]


def test_requires_query(query, articles):
    with pytest.raises(TypeError, match="nested must be a Query"):
        query().merge_subquery(Operator.IN, articles.field("id"), {"name": "Ada"})
