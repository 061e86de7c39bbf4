# src/query_descriptor/__init__.py

"""
Query Descriptor Library Initialization.

This package provides a composable description of read requests against a
data store: filters, ordering, projection, joins and pagination, with
normalization of shorthand input and well-defined merge rules.

It initializes a logger with a NullHandler and makes the query descriptor,
clause types, schema adapter and exceptions available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "query_descriptor".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Exceptions
# --------------------------------------------------------------------------
from .base.exceptions import (
    IncompatibleMergeError,
    InvalidOptionError,
    QueryError,
    UnresolvedReferenceError,
    UnsupportedClauseError,
)

# --------------------------------------------------------------------------
# Clause Types
# --------------------------------------------------------------------------
from .base.clauses import (
    Condition,
    Deferred,
    Direction,
    FieldPath,
    Operator,
    OperatorClause,
    Range,
    RawCondition,
    SortOrder,
)

# --------------------------------------------------------------------------
# Schema and Repository Context
# --------------------------------------------------------------------------
from .base.schema import FieldSpec, ModelSchema, Relationship, SchemaAdapter, SchemaField
from .base.repository import Repository

# --------------------------------------------------------------------------
# Query Descriptor
# --------------------------------------------------------------------------
from .base.query import Query

__all__ = [
    # Query
    "Query",
    "Repository",
    # Clauses
    "Condition",
    "Deferred",
    "Direction",
    "FieldPath",
    "Operator",
    "OperatorClause",
    "Range",
    "RawCondition",
    "SortOrder",
    # Schema
    "FieldSpec",
    "ModelSchema",
    "Relationship",
    "SchemaAdapter",
    "SchemaField",
    # Exceptions
    "QueryError",
    "InvalidOptionError",
    "UnresolvedReferenceError",
    "UnsupportedClauseError",
    "IncompatibleMergeError",
    # Logging
    "logger",
]

__version__ = "0.1.0"
