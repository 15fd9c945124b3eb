"""
tagq - query toolkit for tagged workspace exports

Loads tagged nodes, their field values and the tag-inheritance schema into
a single SQLite file and queries them with a small language:

    find task where Status = Done and Due < 7d order by -created limit 20

Example Usage:
    >>> from tagq import Database, execute_query, aggregate
    >>> db = Database("workspace.db")
    >>> for item in execute_query(db, "find contact where Email ~ example.com"):
    ...     print(item.name, item["Email"])
    >>> aggregate(db, "todo", group_by="Status").groups
    {'Done': 2, 'In Progress': 2, 'Backlog': 1}
"""

__version__ = "0.3.0"
__author__ = "tagq Contributors"

# Errors
from tagq.errors import (
    TagqError,
    LexicalError,
    QuerySyntaxError,
    SchemaError,
    TagNotFoundError,
    FieldNotFoundError,
    InheritanceCycleError,
    TypeCoercionError,
    ExecutionError,
)

# Configuration
from tagq.config import TagqConfig, load_config

# Database API
from tagq.db import Database, get_db

# Schema
from tagq.schema import (
    DataType,
    SchemaSnapshot,
    SchemaResolver,
    normalize_name,
    infer_data_type,
)

# Query and aggregation
from tagq.query import parse_query, execute_query, QueryExecutor
from tagq.aggregate import AggregationEngine, aggregate

__all__ = [
    # Errors
    "TagqError",
    "LexicalError",
    "QuerySyntaxError",
    "SchemaError",
    "TagNotFoundError",
    "FieldNotFoundError",
    "InheritanceCycleError",
    "TypeCoercionError",
    "ExecutionError",
    # Config
    "TagqConfig",
    "load_config",
    # Database
    "Database",
    "get_db",
    # Schema
    "DataType",
    "SchemaSnapshot",
    "SchemaResolver",
    "normalize_name",
    "infer_data_type",
    # Query
    "parse_query",
    "execute_query",
    "QueryExecutor",
    "AggregationEngine",
    "aggregate",
]
