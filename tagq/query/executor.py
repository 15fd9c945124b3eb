"""
Query execution engine for tagq.

Runs the pipeline end to end: parse (if given text), snapshot the schema,
compile, execute, and attach field values to each matching node.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..config import TagqConfig
from ..db import Database
from ..errors import ExecutionError
from ..models import FieldValue
from ..schema import SchemaResolver, SchemaSnapshot
from .ast import Query
from .compiler import CompiledQuery, QueryCompiler
from .parser import parse_query
from .results import EntityItem, QueryResult

logger = logging.getLogger(__name__)

# Bound on ids per IN (...) when loading field values
_CHUNK_SIZE = 500


class QueryExecutor:
    """
    Executes queries against a Database.

    Args:
        db: store to query
        config: explicit configuration (strictness, fuzzy matching); defaults
            to the database's configuration
        now: anchor for relative dates; defaults to the current time
    """

    def __init__(self, db: Database, config: Optional[TagqConfig] = None,
                 now: Optional[datetime] = None):
        self.db = db
        self.config = config or db.config
        self.now = now

    def compile(self, query: Union[str, Query]) -> CompiledQuery:
        """Parse (if needed) and compile against a fresh schema snapshot."""
        if isinstance(query, str):
            query = parse_query(query)
        try:
            with self.db.session() as session:
                snapshot = SchemaSnapshot.load(session)
        except SQLAlchemyError as e:
            raise ExecutionError(f"Loading schema failed: {e}", original=e) from e
        resolver = SchemaResolver(snapshot, strict=self.config.strict_fields)
        return QueryCompiler(resolver, self.config, self.now).compile(query)

    def explain(self, query: Union[str, Query]) -> str:
        """SQL the query compiles to."""
        return self.compile(query).to_sql()

    def execute(self, query: Union[str, Query]) -> QueryResult[EntityItem]:
        """
        Run a query.

        Raises:
            LexicalError, QuerySyntaxError: malformed query text
            SchemaError, TypeCoercionError: query does not fit the schema
            ExecutionError: the store failed the statement
        """
        compiled = self.compile(query)
        return self.run(compiled)

    def run(self, compiled: CompiledQuery) -> QueryResult[EntityItem]:
        """Execute an already compiled query."""
        try:
            with self.db.session() as session:
                total = session.scalar(compiled.count_statement)
                rows = session.execute(compiled.statement).all()
                items = [
                    EntityItem(
                        id=row.id,
                        name=row.name,
                        created=row.created,
                        updated=row.updated,
                        done_at=row.done_at,
                    )
                    for row in rows
                ]
                self._attach_fields(session, items, compiled.fields or None)
            tags = self.db.node_tags([item.id for item in items])
        except SQLAlchemyError as e:
            raise ExecutionError(f"Query execution failed: {e}", original=e) from e

        for item in items:
            item.tags = tags.get(item.id, [])

        logger.debug("Query on %r matched %d rows (%d returned)",
                     compiled.query.target, total, len(items))
        return QueryResult(
            items=items,
            total_count=total,
            offset=compiled.offset or 0,
            metadata={
                'target': compiled.query.target,
                'fields': list(compiled.fields),
                'select': compiled.query.select,
            },
        )

    @staticmethod
    def _attach_fields(session, items: List[EntityItem],
                       field_names: Optional[List[str]]) -> None:
        """Load field values for items; all fields when field_names is None."""
        by_id: Dict[str, EntityItem] = {item.id: item for item in items}
        ids = list(by_id)
        values: Dict[str, Dict[str, List[str]]] = {node_id: {} for node_id in ids}

        for start in range(0, len(ids), _CHUNK_SIZE):
            chunk = ids[start:start + _CHUNK_SIZE]
            stmt = (
                select(FieldValue.parent_id, FieldValue.field_name, FieldValue.value_text)
                .where(FieldValue.parent_id.in_(chunk), FieldValue.value_text != "")
                .order_by(FieldValue.parent_id, FieldValue.value_order, FieldValue.id)
            )
            if field_names is not None:
                stmt = stmt.where(FieldValue.field_name.in_(field_names))
            for parent_id, field_name, value_text in session.execute(stmt):
                values[parent_id].setdefault(field_name, []).append(value_text)

        order = {name: index for index, name in enumerate(field_names or [])}
        for node_id, fields in values.items():
            names = sorted(fields, key=lambda n: order.get(n, len(order)))
            by_id[node_id].fields = {name: ", ".join(fields[name]) for name in names}


def execute_query(db: Database, query: Union[str, Query],
                  config: Optional[TagqConfig] = None) -> QueryResult[EntityItem]:
    """Convenience wrapper around QueryExecutor.execute."""
    return QueryExecutor(db, config).execute(query)
