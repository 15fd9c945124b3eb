"""
Query AST for the tagq query language.

A Query names a target tag and optionally carries a filter expression,
ordering, pagination and a projection list:

    Query(
        target='task',
        filter=And(
            Comparison('Status', Operator.EQ, 'Done'),
            Not(Exists('Assignee')),
        ),
        order_by=[OrderItem('created', descending=True)],
        limit=10,
    )

Filter expressions form a closed set of frozen dataclasses. Consumers
dispatch on the concrete class and treat anything else as a programming
error (see format_filter).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .tokens import KEYWORDS


WILDCARD = "*"


# =============================================================================
# Operators
# =============================================================================

class Operator(Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    CONTAINS = "~"

    @classmethod
    def from_string(cls, s: str) -> "Operator":
        for op in cls:
            if op.value == s:
                return op
        raise ValueError(f"Unknown operator: {s}")

    @property
    def is_ordered(self) -> bool:
        return self in (Operator.GT, Operator.GE, Operator.LT, Operator.LE)


# =============================================================================
# Filter Expressions
# =============================================================================

Literal = Union[str, int, float]


@dataclass(frozen=True)
class Comparison:
    field: str
    op: Operator
    value: Literal


@dataclass(frozen=True)
class Exists:
    field: str


@dataclass(frozen=True)
class IsEmpty:
    """Field is missing, or has no non-empty value."""
    field: str


@dataclass(frozen=True)
class Not:
    expr: "FilterExpr"


@dataclass(frozen=True)
class And:
    left: "FilterExpr"
    right: "FilterExpr"


@dataclass(frozen=True)
class Or:
    left: "FilterExpr"
    right: "FilterExpr"


FilterExpr = Union[Comparison, Exists, IsEmpty, Not, And, Or]


def iter_fields(expr: FilterExpr) -> List[str]:
    """Field names referenced by a filter, in order of appearance."""
    if isinstance(expr, (Comparison, Exists, IsEmpty)):
        return [expr.field]
    if isinstance(expr, Not):
        return iter_fields(expr.expr)
    if isinstance(expr, (And, Or)):
        return iter_fields(expr.left) + iter_fields(expr.right)
    raise TypeError(f"Unknown filter node: {expr!r}")


# =============================================================================
# Query
# =============================================================================

@dataclass(frozen=True)
class OrderItem:
    field: str
    descending: bool = False


@dataclass
class Query:
    """A parsed query. Only the target is required."""
    target: str
    filter: Optional[FilterExpr] = None
    order_by: List[OrderItem] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    select: Optional[List[str]] = None

    @property
    def is_wildcard(self) -> bool:
        return self.target == WILDCARD

    def referenced_fields(self) -> List[str]:
        names = iter_fields(self.filter) if self.filter is not None else []
        names.extend(item.field for item in self.order_by)
        return names


# =============================================================================
# Formatting
# =============================================================================

_SIMPLE_WORD = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.")


def _format_name(name: str) -> str:
    if name and (name == WILDCARD or all(ch in _SIMPLE_WORD for ch in name)) \
            and not name[0].isdigit() and name.lower() not in KEYWORDS:
        return name
    return _quote(name)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _format_value(value: Literal) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return _quote(value)


def format_filter(expr: FilterExpr, parent_precedence: int = 0) -> str:
    """Render a filter expression, adding parentheses only where needed."""
    if isinstance(expr, Comparison):
        return f"{_format_name(expr.field)} {expr.op.value} {_format_value(expr.value)}"
    if isinstance(expr, Exists):
        return f"{_format_name(expr.field)} exists"
    if isinstance(expr, IsEmpty):
        return f"{_format_name(expr.field)} is empty"
    if isinstance(expr, Not):
        return f"not {format_filter(expr.expr, 3)}"
    if isinstance(expr, And):
        text = f"{format_filter(expr.left, 2)} and {format_filter(expr.right, 3)}"
        return f"({text})" if parent_precedence > 2 else text
    if isinstance(expr, Or):
        text = f"{format_filter(expr.left, 1)} or {format_filter(expr.right, 2)}"
        return f"({text})" if parent_precedence > 1 else text
    raise TypeError(f"Unknown filter node: {expr!r}")


def format_query(query: Query) -> str:
    """Render a Query back to canonical query text."""
    parts = ["find", _format_name(query.target)]
    if query.filter is not None:
        parts += ["where", format_filter(query.filter)]
    if query.order_by:
        items = [("-" if item.descending else "") + _format_name(item.field)
                 for item in query.order_by]
        parts += ["order by", ", ".join(items)]
    if query.limit is not None:
        parts += ["limit", str(query.limit)]
    if query.offset is not None:
        parts += ["offset", str(query.offset)]
    if query.select:
        parts += ["select", ", ".join(_format_name(name) for name in query.select)]
    return " ".join(parts)
