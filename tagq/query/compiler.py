"""
Query compiler: lowers a parsed Query to SQLAlchemy statements.

The generated SQL runs against three tables:

    nodes             one row per entity
    tag_applications  entity <-> tag membership
    field_values      one row per stored field value

Every field test is an EXISTS subquery on field_values correlated with the
outer nodes row, so And/Or/Not map one-to-one onto SQL boolean operators and
multi-valued fields need no joins. The compiler is pure: it reads the schema
through a SchemaResolver and never touches the database itself.

Example:

    resolver = SchemaResolver(snapshot)
    compiled = QueryCompiler(resolver).compile(parse_query(
        "find task where Status = Done and Priority > 2 order by -created limit 10"
    ))
    print(compiled.to_sql())
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import (
    Float, Integer, and_, cast, column, false, func, not_, or_, select, table,
    literal_column, true,
)
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import Select

from ..config import TagqConfig
from ..errors import FieldNotFoundError, TypeCoercionError
from ..fts import FTS_TABLE, prepare_match_query
from ..models import FieldValue, Node, TagApplication
from ..schema import DataType, ResolvedTag, SchemaResolver, normalize_name
from .ast import (
    Query, FilterExpr, Comparison, Exists, IsEmpty, Not, And, Or, Operator,
    OrderItem,
)
from .coerce import FALSE_WORDS, TRUE_WORDS, coerce_literal

logger = logging.getLogger(__name__)


# Columns of the nodes table addressable by name in queries. Declared tag
# fields with the same normalized name take precedence.
NODE_FIELDS: Dict[str, Tuple[ColumnElement, DataType]] = {
    "id": (Node.id, DataType.TEXT),
    "name": (Node.name, DataType.TEXT),
    "created": (Node.created, DataType.DATE),
    "updated": (Node.updated, DataType.DATE),
    "done": (Node.done_at, DataType.DATE),
    "doneat": (Node.done_at, DataType.DATE),
}

RESULT_COLUMNS = (Node.id, Node.name, Node.created, Node.updated, Node.done_at)

# parent.name and parent.tags address the node's parent rather than the node
PARENT_PREFIX = "parent."
PARENT_FIELDS = ("name", "tags")

_fts = table(FTS_TABLE, column("rowid"))


# =============================================================================
# Field references
# =============================================================================

@dataclass
class FieldRef:
    """
    What a field identifier compiles against.

    Either a nodes column, or a field_values field_name optionally scoped to
    nodes carrying one of tag_ids (wildcard queries).
    """
    name: str
    data_type: DataType
    column: Optional[ColumnElement] = None
    stored_name: Optional[str] = None
    tag_ids: Optional[Tuple[str, ...]] = None

    @property
    def is_node_column(self) -> bool:
        return self.column is not None


def membership(tag_ids: Sequence[str]) -> ColumnElement:
    """EXISTS test: the outer node carries one of tag_ids."""
    condition = (
        TagApplication.tag_id == tag_ids[0] if len(tag_ids) == 1
        else TagApplication.tag_id.in_(list(tag_ids))
    )
    return select(TagApplication.id).where(
        TagApplication.data_node_id == Node.id, condition
    ).exists()


def value_expression(text: ColumnElement, data_type: DataType) -> ColumnElement:
    """The comparable form of a stored value_text for a field type."""
    if data_type == DataType.NUMBER:
        return cast(text, Float)
    if data_type == DataType.DATE:
        return cast(func.strftime("%s", text), Integer) * 1000
    if data_type == DataType.CHECKBOX:
        return func.lower(func.trim(text))
    return text


def _numeric_guard(text: ColumnElement) -> ColumnElement:
    # CAST('abc' AS REAL) is 0.0 in SQLite
    return and_(text.op("GLOB")("*[0-9]*"), not_(text.op("GLOB")("*[^0-9.+-]*")))


def parent_path(identifier: str) -> Optional[str]:
    """
    "name" or "tags" for a parent path such as parent.name, else None.

    Raises:
        FieldNotFoundError: parent.<anything else>
    """
    if not identifier.lower().startswith(PARENT_PREFIX):
        return None
    path = normalize_name(identifier[len(PARENT_PREFIX):])
    if path not in PARENT_FIELDS:
        raise FieldNotFoundError(identifier, "parent", PARENT_FIELDS)
    return path


# =============================================================================
# Compiled output
# =============================================================================

@dataclass
class CompiledQuery:
    """
    Executable form of a Query.

    Attributes:
        statement: SELECT of RESULT_COLUMNS with filter, order and pagination
        count_statement: COUNT of matching nodes, ignoring pagination
        query: the source Query
        tag: resolved target tag, None for wildcard queries
        fields: result field names, in effective-field order
    """
    statement: Select
    count_statement: Select
    query: Query
    tag: Optional[ResolvedTag] = None
    fields: List[str] = field(default_factory=list)

    @property
    def limit(self) -> Optional[int]:
        return self.query.limit

    @property
    def offset(self) -> Optional[int]:
        return self.query.offset

    def to_sql(self) -> str:
        """SQL text with parameters inlined, for display."""
        compiled = self.statement.compile(
            dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}
        )
        return str(compiled)


# =============================================================================
# Compiler
# =============================================================================

class QueryCompiler:
    """
    Compiles Query ASTs against a schema.

    Args:
        resolver: schema to resolve tags and fields against
        config: supplies fuzzy_match ('substring' or 'fts')
        now: anchor for relative dates such as 7d; defaults to the current time
    """

    def __init__(self, resolver: SchemaResolver, config: Optional[TagqConfig] = None,
                 now: Optional[datetime] = None):
        self.resolver = resolver
        self.config = config or TagqConfig()
        self.now = now or datetime.now(timezone.utc)

    def compile(self, query: Query) -> CompiledQuery:
        """
        Raises:
            SchemaError: unknown target tag or field, or inheritance cycle
            TypeCoercionError: a literal does not fit its field's type
        """
        tag: Optional[ResolvedTag] = None
        tag_id: Optional[str] = None
        conditions: List[ColumnElement] = []

        if not query.is_wildcard:
            tag = self.resolver.resolve_tag(query.target)
            tag_id = tag.tag_id
            conditions.append(membership([tag_id]))

        if query.filter is not None:
            conditions.append(self.compile_filter(query.filter, tag_id))

        statement = (
            select(*RESULT_COLUMNS)
            .where(*conditions)
            .order_by(*self._order_clauses(query.order_by, tag_id))
        )
        # LIMIT -1 is SQLite's "no limit", which lets OFFSET stand alone
        if query.limit is not None:
            statement = statement.limit(query.limit)
        if query.offset:
            statement = statement.offset(query.offset)

        count_statement = select(func.count(Node.id)).where(*conditions)

        compiled = CompiledQuery(
            statement=statement,
            count_statement=count_statement,
            query=query,
            tag=tag,
            fields=tag.field_names() if tag else [],
        )
        logger.debug("Compiled %r to:\n%s", query.target, statement)
        return compiled

    # -------------------------------------------------------------------------
    # Field lookup
    # -------------------------------------------------------------------------

    def resolve_reference(self, identifier: str, tag_id: Optional[str]) -> List[FieldRef]:
        """
        Map an identifier to what it compiles against.

        With a tag: the tag's effective field, else a node column, else the
        resolver decides (FieldNotFoundError when strict, [] when lenient).
        Without a tag (wildcard): one FieldRef per (stored name, type) across
        all tags declaring the field, else a node column, else [].
        """
        key = normalize_name(identifier)

        if tag_id is not None:
            for f in self.resolver.effective_fields(tag_id):
                if f.normalized_name == key:
                    return [FieldRef(f.original_name, f.inferred_type, stored_name=f.original_name)]
            if key in NODE_FIELDS:
                return [self._node_ref(identifier, key)]
            self.resolver.resolve_field(tag_id, identifier)
            return []

        groups: Dict[Tuple[str, DataType], List[str]] = {}
        for match_tag_id, f in self.resolver.find_field_everywhere(identifier):
            groups.setdefault((f.original_name, f.inferred_type), []).append(match_tag_id)
        if groups:
            return [
                FieldRef(name, data_type, stored_name=name, tag_ids=tuple(tag_ids))
                for (name, data_type), tag_ids in groups.items()
            ]
        if key in NODE_FIELDS:
            return [self._node_ref(identifier, key)]

        logger.debug("Field %r is not declared by any tag", identifier)
        return []

    @staticmethod
    def _node_ref(identifier: str, key: str) -> FieldRef:
        node_column, data_type = NODE_FIELDS[key]
        return FieldRef(identifier, data_type, column=node_column)

    # -------------------------------------------------------------------------
    # Filters
    # -------------------------------------------------------------------------

    def compile_filter(self, expr: FilterExpr, tag_id: Optional[str]) -> ColumnElement:
        """Lower a filter expression to a boolean SQL expression over nodes."""
        if isinstance(expr, Comparison):
            return self._compile_comparison(expr, tag_id)
        if isinstance(expr, Exists):
            return self._compile_exists(expr, tag_id)
        if isinstance(expr, IsEmpty):
            return self._compile_is_empty(expr, tag_id)
        if isinstance(expr, Not):
            return not_(self.compile_filter(expr.expr, tag_id))
        if isinstance(expr, And):
            return and_(self.compile_filter(expr.left, tag_id),
                        self.compile_filter(expr.right, tag_id))
        if isinstance(expr, Or):
            return or_(self.compile_filter(expr.left, tag_id),
                       self.compile_filter(expr.right, tag_id))
        raise TypeError(f"Unknown filter node: {expr!r}")

    def _compile_comparison(self, expr: Comparison, tag_id: Optional[str]) -> ColumnElement:
        path = parent_path(expr.field)
        if path is not None:
            return self._compare_parent(path, expr.field, expr.op, expr.value)

        refs = self.resolve_reference(expr.field, tag_id)
        if not refs:
            return false()

        if len(refs) == 1 and refs[0].tag_ids is None:
            return self._compare(refs[0], expr.op, expr.value)

        # Wildcard: each declaring tag group is tried on its own terms
        clauses = []
        errors: List[TypeCoercionError] = []
        for ref in refs:
            try:
                clauses.append(self._compare(ref, expr.op, expr.value))
            except TypeCoercionError as e:
                logger.debug("Skipping %s on tags %s: %s", ref.name, ref.tag_ids, e)
                errors.append(e)
        if not clauses:
            raise errors[0]
        return or_(*clauses)

    def _compare(self, ref: FieldRef, op: Operator, value) -> ColumnElement:
        coerced = coerce_literal(ref.name, ref.data_type, op, value, self.now)

        if ref.is_node_column:
            return self._test(ref.column, ref.data_type, op, coerced)

        if op == Operator.NE:
            condition = and_(
                self._value_exists(ref),
                not_(self._value_exists(ref, Operator.EQ, coerced)),
            )
        else:
            condition = self._value_exists(ref, op, coerced)

        if ref.tag_ids:
            condition = and_(membership(ref.tag_ids), condition)
        return condition

    def _compile_exists(self, expr: Exists, tag_id: Optional[str]) -> ColumnElement:
        path = parent_path(expr.field)
        if path is not None:
            return self._parent_exists(path)

        clauses = []
        for ref in self.resolve_reference(expr.field, tag_id):
            if ref.is_node_column:
                present = ref.column.is_not(None)
                if ref.data_type == DataType.TEXT:
                    present = and_(present, ref.column != "")
                clauses.append(present)
            elif ref.tag_ids:
                clauses.append(and_(membership(ref.tag_ids), self._value_exists(ref)))
            else:
                clauses.append(self._value_exists(ref))
        if not clauses:
            return false()
        return or_(*clauses) if len(clauses) > 1 else clauses[0]

    def _compile_is_empty(self, expr: IsEmpty, tag_id: Optional[str]) -> ColumnElement:
        """Missing fields count as empty."""
        path = parent_path(expr.field)
        if path is not None:
            return not_(self._parent_exists(path))

        clauses = []
        for ref in self.resolve_reference(expr.field, tag_id):
            if ref.is_node_column:
                empty = ref.column.is_(None)
                if ref.data_type == DataType.TEXT:
                    empty = or_(empty, ref.column == "")
                clauses.append(empty)
            else:
                clauses.append(not_(self._value_exists(ref)))
        if not clauses:
            return true()
        return and_(*clauses) if len(clauses) > 1 else clauses[0]

    # -------------------------------------------------------------------------
    # Parent paths
    # -------------------------------------------------------------------------

    def _compare_parent(self, path: str, identifier: str, op: Operator, value) -> ColumnElement:
        coerced = coerce_literal(identifier, DataType.TEXT, op, value, self.now)
        parent = aliased(Node)

        if path == "name":
            return select(parent.id).where(
                parent.id == Node.parent_id,
                self._test(parent.name, DataType.TEXT, op, coerced),
            ).exists()

        ta = aliased(TagApplication)
        if op == Operator.CONTAINS:
            condition = ta.tag_name.contains(coerced, autoescape=True)
        else:
            condition = func.lower(ta.tag_name) == coerced.lower()
        matched = select(ta.id).where(ta.data_node_id == Node.parent_id, condition).exists()
        if op == Operator.NE:
            return and_(Node.parent_id.is_not(None), not_(matched))
        return matched

    @staticmethod
    def _parent_exists(path: str) -> ColumnElement:
        if path == "name":
            parent = aliased(Node)
            return select(parent.id).where(
                parent.id == Node.parent_id, parent.name.is_not(None), parent.name != "",
            ).exists()
        ta = aliased(TagApplication)
        return select(ta.id).where(ta.data_node_id == Node.parent_id).exists()

    def _value_exists(self, ref: FieldRef, op: Optional[Operator] = None,
                      value=None) -> ColumnElement:
        """EXISTS a non-empty stored value of ref on the outer node, optionally tested."""
        fv = aliased(FieldValue)
        conditions = [
            fv.parent_id == Node.id,
            fv.field_name == ref.stored_name,
            fv.value_text != "",
        ]
        if op is not None:
            if op == Operator.CONTAINS and self.config.fuzzy_match == "fts":
                conditions.append(fv.id.in_(
                    select(_fts.c.rowid).where(
                        literal_column(FTS_TABLE).op("MATCH")(prepare_match_query(value))
                    )
                ))
            else:
                if ref.data_type == DataType.NUMBER and op != Operator.CONTAINS:
                    conditions.append(_numeric_guard(fv.value_text))
                conditions.append(self._test(fv.value_text, ref.data_type, op, value,
                                             stored_text=True))
        return select(fv.id).where(*conditions).exists()

    @staticmethod
    def _test(target: ColumnElement, data_type: DataType, op: Operator, value,
              stored_text: bool = False) -> ColumnElement:
        """Apply op to target. stored_text means target is raw value_text."""
        if op == Operator.CONTAINS:
            return target.contains(value, autoescape=True)

        if stored_text:
            target = value_expression(target, data_type)

        if data_type == DataType.CHECKBOX:
            words = list(TRUE_WORDS if value else FALSE_WORDS)
            matched = target.in_(words)
            return matched if op == Operator.EQ else not_(matched)

        if op == Operator.EQ:
            return target == value
        if op == Operator.NE:
            return target != value
        if op == Operator.GT:
            return target > value
        if op == Operator.GE:
            return target >= value
        if op == Operator.LT:
            return target < value
        if op == Operator.LE:
            return target <= value
        raise TypeError(f"Unknown operator: {op!r}")

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def _order_clauses(self, order_by: List[OrderItem], tag_id: Optional[str]) -> List:
        clauses = []
        for item in order_by:
            key = self._order_key(item.field, tag_id)
            if key is None:
                continue
            ordered = key.desc() if item.descending else key.asc()
            clauses.append(ordered.nulls_last())

        if not order_by:
            clauses.append(Node.created.desc().nulls_last())
        # Stable pagination
        clauses.append(Node.id.asc())
        return clauses

    def _order_key(self, identifier: str, tag_id: Optional[str]) -> Optional[ColumnElement]:
        path = parent_path(identifier)
        if path == "name":
            parent = aliased(Node)
            return select(parent.name).where(parent.id == Node.parent_id).scalar_subquery()
        if path is not None:
            logger.warning("Ignoring order by multi-valued %r", identifier)
            return None

        refs = self.resolve_reference(identifier, tag_id)
        if not refs:
            logger.warning("Ignoring order by unknown field %r", identifier)
            return None
        if refs[0].is_node_column:
            return refs[0].column

        types = {ref.data_type for ref in refs}
        data_type = types.pop() if len(types) == 1 else DataType.TEXT
        if data_type == DataType.CHECKBOX:
            data_type = DataType.TEXT

        fv = aliased(FieldValue)
        names = [ref.stored_name for ref in refs]
        name_test = fv.field_name == names[0] if len(names) == 1 else fv.field_name.in_(names)
        return (
            select(value_expression(fv.value_text, data_type))
            .where(fv.parent_id == Node.id, name_test, fv.value_text != "")
            .order_by(fv.value_order)
            .limit(1)
            .scalar_subquery()
        )


def compile_query(query: Query, resolver: SchemaResolver,
                  config: Optional[TagqConfig] = None,
                  now: Optional[datetime] = None) -> CompiledQuery:
    """Compile a Query against a resolver. See QueryCompiler."""
    return QueryCompiler(resolver, config, now).compile(query)
