"""
Result types for the tagq query language.

- EntityItem: one matching node with its field values
- QueryResult[T]: generic, iterable container with pagination metadata
- AggregateResult: totals and grouped counts from the aggregation engine
"""

from dataclasses import dataclass, field
from typing import (
    Any, Dict, Generic, Iterator, List, Optional, TypeVar, Union,
)

from ..schema import normalize_name

T = TypeVar('T')


# =============================================================================
# Entities
# =============================================================================

@dataclass
class EntityItem:
    """
    A node returned by a query.

    Field values are keyed by the field's declared name; multi-valued fields
    are joined with ", ". Lookup by item[name] is normalization-aware, so
    item['due date'] finds 'Due Date'.
    """
    id: str
    name: Optional[str]
    created: Optional[int] = None
    updated: Optional[int] = None
    done_at: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    fields: Dict[str, str] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Optional[str]:
        if key in self.fields:
            return self.fields[key]
        normalized = normalize_name(key)
        for name, value in self.fields.items():
            if normalize_name(name) == normalized:
                return value
        if normalized in ("id", "name", "created", "updated"):
            return getattr(self, normalized)
        raise KeyError(key)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'created': self.created,
            'updated': self.updated,
            'tags': list(self.tags),
            'fields': dict(self.fields),
        }

    def flat(self, select: Optional[List[str]] = None) -> Dict[str, Any]:
        """Single-level mapping, optionally restricted to selected names."""
        if select:
            return {name: self.get(name) for name in select}
        row: Dict[str, Any] = {'id': self.id, 'name': self.name}
        row.update(self.fields)
        return row


# =============================================================================
# Base Result Container
# =============================================================================

@dataclass
class QueryResult(Generic[T]):
    """
    Result container for queries.

    total_count is the number of matches before limit/offset.
    """
    items: List[T] = field(default_factory=list)
    total_count: Optional[int] = None
    offset: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __getitem__(self, idx: Union[int, slice]) -> Union[T, List[T]]:
        return self.items[idx]

    def __bool__(self) -> bool:
        return len(self.items) > 0

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def has_more(self) -> bool:
        """Check if there are more results beyond this page."""
        if self.total_count is None:
            return False
        return self.offset + len(self.items) < self.total_count

    def first(self) -> Optional[T]:
        return self.items[0] if self.items else None

    def project(self, names: Optional[List[str]]) -> List[Dict[str, Any]]:
        """Rows restricted to the given field names (all fields when None)."""
        return [item.flat(names) for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [self._serialize_item(item) for item in self.items],
            'count': len(self.items),
            'total_count': self.total_count,
            'has_more': self.has_more,
            'metadata': self.metadata
        }

    def _serialize_item(self, item: T) -> Any:
        if hasattr(item, 'to_dict'):
            return item.to_dict()
        return item

    @classmethod
    def empty(cls) -> "QueryResult[T]":
        return cls(items=[], total_count=0)


# =============================================================================
# Aggregation
# =============================================================================

@dataclass
class AggregateResult:
    """
    Grouped counts.

    groups maps the raw stored value (or time period) to a count, largest
    group first. Without a group-by, groups is empty.
    """
    total: int
    groups: Dict[str, int] = field(default_factory=dict)
    percentages: Optional[Dict[str, float]] = None
    group_count: Optional[int] = None  # groups before capping
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'total': self.total, 'groups': dict(self.groups)}
        if self.percentages is not None:
            data['percentages'] = dict(self.percentages)
        if self.group_count is not None and self.group_count != len(self.groups):
            data['group_count'] = self.group_count
        if self.warning:
            data['warning'] = self.warning
        return data
