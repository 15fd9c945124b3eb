"""
tagq Query Language.

    find TAG [where FILTER] [order by FIELD, -FIELD] [limit N] [offset M] [select F, G]

Filters combine comparisons (=, !=, >, >=, <, <=, ~), existence checks
("Assignee exists"), not, and, or and parentheses. Field names are matched
against the tag's own and inherited fields after normalization.

Example usage:

    from tagq.db import Database
    from tagq.query import execute_query

    db = Database('workspace.db')
    result = execute_query(db, 'find task where Status = Done order by -created limit 10')

    for item in result:
        print(item.name, item['Status'])

    # The pipeline stages are usable on their own
    from tagq.query import tokenize, parse, QueryCompiler
    from tagq.schema import SchemaResolver

    query = parse(tokenize('find contact where Email ~ example.com'))
    compiled = QueryCompiler(SchemaResolver(snapshot)).compile(query)
    print(compiled.to_sql())
"""

# Tokens
from .tokens import Token, TokenKind, KEYWORDS, tokenize

# AST
from .ast import (
    Query,
    OrderItem,
    Operator,
    FilterExpr,
    Comparison,
    Exists,
    IsEmpty,
    Not,
    And,
    Or,
    WILDCARD,
    format_query,
    format_filter,
)

# Parser
from .parser import Parser, parse, parse_query, parse_filter

# Compilation
from .coerce import coerce_literal
from .compiler import QueryCompiler, CompiledQuery, compile_query

# Execution
from .executor import QueryExecutor, execute_query
from .results import QueryResult, EntityItem, AggregateResult

# Saved queries
from .registry import QueryRegistry, SavedQuery, RegistryError

__all__ = [
    # Tokens
    'Token',
    'TokenKind',
    'KEYWORDS',
    'tokenize',
    # AST
    'Query',
    'OrderItem',
    'Operator',
    'FilterExpr',
    'Comparison',
    'Exists',
    'IsEmpty',
    'Not',
    'And',
    'Or',
    'WILDCARD',
    'format_query',
    'format_filter',
    # Parser
    'Parser',
    'parse',
    'parse_query',
    'parse_filter',
    # Compilation
    'coerce_literal',
    'QueryCompiler',
    'CompiledQuery',
    'compile_query',
    # Execution
    'QueryExecutor',
    'execute_query',
    'QueryResult',
    'EntityItem',
    'AggregateResult',
    # Saved queries
    'QueryRegistry',
    'SavedQuery',
    'RegistryError',
]
