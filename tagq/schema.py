"""
Tag schema resolution for tagq.

Tags declare fields and may inherit fields from parent tags. Given a tag
name, the resolver computes the tag's effective field list: own fields
first (declared order), then inherited fields by ascending distance in the
inheritance graph. A field name is claimed by the closest tag that declares
it; matching is always done on normalized names, so "Due Date", "due_date"
and "dueDate" are the same field.

Example:

    snapshot = SchemaSnapshot()
    snapshot.add_tag('c', 'contact')
    snapshot.add_field('c', 'Email')
    snapshot.add_tag('e', 'employee')
    snapshot.add_field('e', 'Department')
    snapshot.add_parent('e', 'c')

    resolver = SchemaResolver(snapshot)
    tag = resolver.resolve_tag('Employee')
    [f.original_name for f in tag.fields]    # ['Department', 'Email']
"""

import difflib
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import FieldNotFoundError, InheritanceCycleError, TagNotFoundError
from .models import TagField, TagMetadata, TagParent

logger = logging.getLogger(__name__)


# =============================================================================
# Normalization and type inference
# =============================================================================

_SYMBOLS = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s\-_]+")

# "isActive", "is_done", "Has Email", "Issue"; tested on the lowercased name
_BOOLEAN_PREFIX = re.compile(r"^(?:is|has)(?:$|[a-z\s\-_])")


def normalize_name(name: str) -> str:
    """
    Canonical matching key for tag and field names.

    Case-folds, drops emoji and other symbols, then removes whitespace,
    dashes and underscores:

        normalize_name("🏷️ Due-Date")  ->  "duedate"
    """
    lowered = _SYMBOLS.sub("", name.casefold())
    return _SEPARATORS.sub("", lowered)


class DataType(str, Enum):
    TEXT = "text"
    DATE = "date"
    URL = "url"
    NUMBER = "number"
    REFERENCE = "reference"
    CHECKBOX = "checkbox"

    @classmethod
    def from_string(cls, s: str) -> "DataType":
        try:
            return cls(s.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown data type: {s}") from None


def infer_data_type(name: str) -> DataType:
    """Infer a field's data type from its name. First matching rule wins."""
    key = normalize_name(name)

    if "date" in key or "time" in key:
        return DataType.DATE
    if "url" in key or "link" in key:
        return DataType.URL
    if ("count" in key or "number" in key or "amount" in key) and "phone" not in key:
        return DataType.NUMBER
    if "status" in key or "type" in key or "category" in key:
        return DataType.REFERENCE
    if _BOOLEAN_PREFIX.match(name.strip().lower()):
        return DataType.CHECKBOX
    if "enabled" in key or "completed" in key:
        return DataType.CHECKBOX
    return DataType.TEXT


# =============================================================================
# Schema snapshot
# =============================================================================

@dataclass(frozen=True)
class TagInfo:
    tag_id: str
    name: str
    normalized_name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class FieldDef:
    """A field as declared on one tag."""
    tag_id: str
    name: str
    normalized_name: str
    order: int
    data_type: Optional[DataType] = None  # pre-computed override


class TagGraph:
    """Adjacency list of child tag id -> parent tag ids, in declaration order."""

    def __init__(self):
        self._parents: Dict[str, List[str]] = {}

    def add_edge(self, child_id: str, parent_id: str) -> None:
        parents = self._parents.setdefault(child_id, [])
        if parent_id not in parents:
            parents.append(parent_id)

    def parents(self, tag_id: str) -> List[str]:
        return self._parents.get(tag_id, [])

    def find_cycle(self, start: str) -> Optional[List[str]]:
        """Return a cycle path reachable from start, or None."""
        on_path: List[str] = []
        on_path_set = set()
        done = set()
        stack: List[Tuple[str, int]] = [(start, 0)]

        while stack:
            node, index = stack.pop()
            if index == 0:
                on_path.append(node)
                on_path_set.add(node)
            parents = self.parents(node)
            if index < len(parents):
                stack.append((node, index + 1))
                nxt = parents[index]
                if nxt in on_path_set:
                    return on_path[on_path.index(nxt):] + [nxt]
                if nxt not in done:
                    stack.append((nxt, 0))
            else:
                on_path.pop()
                on_path_set.discard(node)
                done.add(node)
        return None

    def ancestors_by_depth(self, tag_id: str) -> List[Tuple[str, int]]:
        """
        Breadth-first walk from tag_id (excluded) to every ancestor.

        Returns (ancestor_id, depth) pairs in visiting order. An ancestor
        reachable along several paths is visited once, at its smallest depth.
        Raises InheritanceCycleError if the reachable graph has a cycle.
        """
        cycle = self.find_cycle(tag_id)
        if cycle:
            raise InheritanceCycleError(cycle)

        visited = {tag_id}
        queue = deque((parent, 1) for parent in self.parents(tag_id))
        result = []
        while queue:
            node, depth = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append((node, depth))
            queue.extend((parent, depth + 1) for parent in self.parents(node))
        return result


class SchemaSnapshot:
    """
    Immutable-by-convention, in-memory copy of the schema tables.

    Built either from the database (load) or by hand for tests.
    """

    def __init__(self):
        self.tags: Dict[str, TagInfo] = {}
        self.fields: Dict[str, List[FieldDef]] = {}
        self.graph = TagGraph()

    def add_tag(self, tag_id: str, name: str, description: Optional[str] = None) -> TagInfo:
        info = TagInfo(tag_id, name, normalize_name(name), description)
        self.tags[tag_id] = info
        return info

    def add_field(self, tag_id: str, name: str, order: Optional[int] = None,
                  data_type: Optional[DataType] = None) -> FieldDef:
        declared = self.fields.setdefault(tag_id, [])
        if order is None:
            order = len(declared)
        fdef = FieldDef(tag_id, name, normalize_name(name), order, data_type)
        declared.append(fdef)
        declared.sort(key=lambda f: f.order)
        return fdef

    def add_parent(self, child_id: str, parent_id: str) -> None:
        self.graph.add_edge(child_id, parent_id)

    def own_fields(self, tag_id: str) -> List[FieldDef]:
        return self.fields.get(tag_id, [])

    @classmethod
    def load(cls, session: Session) -> "SchemaSnapshot":
        """Read tag metadata, tag fields and parent edges from the store."""
        snapshot = cls()

        for row in session.scalars(select(TagMetadata).order_by(TagMetadata.tag_name)):
            snapshot.add_tag(row.tag_id, row.tag_name, row.description)

        fields = session.scalars(
            select(TagField).order_by(TagField.tag_id, TagField.field_order, TagField.id)
        )
        for row in fields:
            override = DataType.from_string(row.inferred_data_type) if row.inferred_data_type else None
            snapshot.add_field(row.tag_id, row.field_name, row.field_order, override)

        for row in session.scalars(select(TagParent).order_by(TagParent.id)):
            snapshot.add_parent(row.child_tag_id, row.parent_tag_id)

        logger.debug("Loaded schema snapshot: %d tags, %d field definitions",
                     len(snapshot.tags), sum(len(v) for v in snapshot.fields.values()))
        return snapshot


# =============================================================================
# Resolved types
# =============================================================================

@dataclass(frozen=True)
class ResolvedField:
    original_name: str
    normalized_name: str
    inferred_type: DataType
    owner_tag_id: str
    inherited_from_tag_id: Optional[str] = None
    depth: int = 0
    order: int = 0

    @property
    def is_inherited(self) -> bool:
        return self.inherited_from_tag_id is not None


@dataclass
class ResolvedTag:
    tag_id: str
    name: str
    fields: List[ResolvedField] = field(default_factory=list)

    @property
    def own_fields(self) -> List[ResolvedField]:
        return [f for f in self.fields if not f.is_inherited]

    @property
    def inherited_fields(self) -> List[ResolvedField]:
        return [f for f in self.fields if f.is_inherited]

    def field_names(self) -> List[str]:
        return [f.original_name for f in self.fields]

    def get(self, identifier: str) -> Optional[ResolvedField]:
        key = normalize_name(identifier)
        for f in self.fields:
            if f.normalized_name == key:
                return f
        return None


# =============================================================================
# Resolver
# =============================================================================

class SchemaResolver:
    """
    Resolves tag names and field identifiers against a SchemaSnapshot.

    Args:
        snapshot: schema to resolve against
        strict: if False, resolve_field logs a warning and returns None for
            unknown fields instead of raising FieldNotFoundError
    """

    def __init__(self, snapshot: SchemaSnapshot, strict: bool = True):
        self.snapshot = snapshot
        self.strict = strict
        self.warnings: List[str] = []
        self._cache: Dict[str, List[ResolvedField]] = {}

    def find_tag(self, tag_name: str) -> Optional[TagInfo]:
        key = normalize_name(tag_name)
        candidates = [t for t in self.snapshot.tags.values() if t.normalized_name == key]
        if not candidates:
            # Allow addressing a tag by id
            return self.snapshot.tags.get(tag_name)
        if len(candidates) == 1:
            return candidates[0]
        # Several tags share a name: prefer the best connected, then richest
        return max(candidates, key=lambda t: (
            len(self.snapshot.graph.parents(t.tag_id)),
            len(self.snapshot.own_fields(t.tag_id)),
        ))

    def resolve_tag(self, tag_name: str, inherited_only: bool = False) -> ResolvedTag:
        """
        Resolve a tag name to its id and effective field list.

        Raises:
            TagNotFoundError: no tag matches the normalized name
            InheritanceCycleError: the tag's ancestry contains a cycle
        """
        info = self.find_tag(tag_name)
        if info is None:
            names = sorted({t.name for t in self.snapshot.tags.values()})
            suggestions = difflib.get_close_matches(tag_name, names, n=3)
            raise TagNotFoundError(tag_name, suggestions)

        fields = self.effective_fields(info.tag_id)
        if inherited_only:
            fields = [f for f in fields if f.is_inherited]
        return ResolvedTag(info.tag_id, info.name, list(fields))

    def effective_fields(self, tag_id: str) -> List[ResolvedField]:
        """Own fields, then inherited fields by ascending depth."""
        if tag_id in self._cache:
            return self._cache[tag_id]

        claimed = set()
        result: List[ResolvedField] = []

        def collect(source_id: str, depth: int) -> None:
            for fdef in self.snapshot.own_fields(source_id):
                if fdef.normalized_name in claimed:
                    continue
                claimed.add(fdef.normalized_name)
                result.append(ResolvedField(
                    original_name=fdef.name,
                    normalized_name=fdef.normalized_name,
                    inferred_type=fdef.data_type or infer_data_type(fdef.name),
                    owner_tag_id=tag_id,
                    inherited_from_tag_id=source_id if depth else None,
                    depth=depth,
                    order=fdef.order,
                ))

        collect(tag_id, 0)
        for ancestor_id, depth in self.snapshot.graph.ancestors_by_depth(tag_id):
            collect(ancestor_id, depth)

        self._cache[tag_id] = result
        return result

    def resolve_field(self, tag_id: str, identifier: str,
                      strict: Optional[bool] = None) -> Optional[ResolvedField]:
        """
        Match a user-typed identifier against a tag's effective fields.

        Raises:
            FieldNotFoundError: in strict mode, when nothing matches
        """
        key = normalize_name(identifier)
        fields = self.effective_fields(tag_id)
        for f in fields:
            if f.normalized_name == key:
                return f

        tag = self.snapshot.tags.get(tag_id)
        tag_name = tag.name if tag else tag_id
        if strict if strict is not None else self.strict:
            raise FieldNotFoundError(identifier, tag_name, [f.original_name for f in fields])

        message = f"Field '{identifier}' not found on tag '{tag_name}', skipping"
        logger.warning(message)
        self.warnings.append(message)
        return None

    def find_field_everywhere(self, identifier: str) -> List[Tuple[str, ResolvedField]]:
        """
        Every (tag_id, field) pair whose effective fields match identifier.

        Tags whose ancestry has a cycle are skipped with a warning.
        """
        key = normalize_name(identifier)
        matches = []
        for tag_id in self.snapshot.tags:
            try:
                fields = self.effective_fields(tag_id)
            except InheritanceCycleError as e:
                message = f"Skipping tag '{self.snapshot.tags[tag_id].name}': {e}"
                if message not in self.warnings:
                    logger.warning(message)
                    self.warnings.append(message)
                continue
            for f in fields:
                if f.normalized_name == key:
                    matches.append((tag_id, f))
                    break
        return matches

    def tag_stats(self) -> List[Dict[str, object]]:
        """Own and inherited field counts for every tag, sorted by name."""
        stats = []
        for info in sorted(self.snapshot.tags.values(), key=lambda t: t.name.lower()):
            fields = self.effective_fields(info.tag_id)
            own = sum(1 for f in fields if not f.is_inherited)
            stats.append({
                "tag_id": info.tag_id,
                "name": info.name,
                "own_fields": own,
                "inherited_fields": len(fields) - own,
                "parents": [
                    self.snapshot.tags[p].name if p in self.snapshot.tags else p
                    for p in self.snapshot.graph.parents(info.tag_id)
                ],
            })
        return stats


def load_resolver(session: Session, strict: bool = True) -> SchemaResolver:
    """Build a resolver over a fresh snapshot of the schema tables."""
    return SchemaResolver(SchemaSnapshot.load(session), strict=strict)


__all__ = [
    "DataType", "normalize_name", "infer_data_type",
    "TagInfo", "FieldDef", "TagGraph", "SchemaSnapshot",
    "ResolvedField", "ResolvedTag", "SchemaResolver", "load_resolver",
]
