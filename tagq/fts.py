"""
Full-Text Search over field values.

Uses a SQLite FTS5 external-content table that mirrors
field_values(field_name, value_text). Triggers keep the index in sync
with inserts, updates and deletes on field_values, so the query compiler
can use it for the '~' operator and the CLI can offer ranked search with:
- Prefix matching (word*)
- Phrase matching ("exact phrase")
- Boolean operators (AND, OR, NOT)
"""
import logging
import sqlite3
from typing import List, Optional, Dict, Any
from dataclasses import dataclass

logger = logging.getLogger(__name__)

FTS_TABLE = 'field_values_fts'

CREATE_TABLE_SQL = f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
        field_name,
        value_text,
        content='field_values',
        content_rowid='id',
        tokenize='porter unicode61'
    )
"""

CREATE_TRIGGERS_SQL = [
    f"""
    CREATE TRIGGER IF NOT EXISTS field_values_ai AFTER INSERT ON field_values BEGIN
        INSERT INTO {FTS_TABLE}(rowid, field_name, value_text)
        VALUES (new.id, new.field_name, new.value_text);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS field_values_ad AFTER DELETE ON field_values BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, field_name, value_text)
        VALUES ('delete', old.id, old.field_name, old.value_text);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS field_values_au AFTER UPDATE ON field_values BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, field_name, value_text)
        VALUES ('delete', old.id, old.field_name, old.value_text);
        INSERT INTO {FTS_TABLE}(rowid, field_name, value_text)
        VALUES (new.id, new.field_name, new.value_text);
    END
    """,
]


@dataclass
class SearchResult:
    """A matching field value with relevance scoring."""
    node_id: str
    node_name: Optional[str]
    field_name: str
    value_text: str
    rank: float
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'node_name': self.node_name,
            'field_name': self.field_name,
            'value_text': self.value_text,
            'rank': self.rank,
            'snippet': self.snippet
        }


def prepare_match_query(query: str) -> str:
    """Prepare free text for FTS5 MATCH.

    Phrases and queries using FTS5 operators pass through; plain words get
    prefix matching and are combined with an implicit AND.
    """
    query = query.strip()
    if query.startswith('"') and query.endswith('"'):
        return query

    if any(op in query.split() for op in ('AND', 'OR', 'NOT', 'NEAR')) or '*' in query:
        return query

    words = query.split()
    return ' '.join(f'"{word.replace(chr(34), "")}"*' for word in words)


class FieldValueIndex:
    """Full-text index manager for field_values."""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to the SQLite database
        """
        self.db_path = db_path

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _table_exists(self, cursor: sqlite3.Cursor) -> bool:
        cursor.execute("""
            SELECT name FROM sqlite_master
            WHERE type='table' AND name=?
        """, (FTS_TABLE,))
        return cursor.fetchone() is not None

    def create_index(self) -> None:
        """Create the FTS5 table and sync triggers if they don't exist.

        A freshly created index over an already populated field_values
        table is rebuilt immediately.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            existed = self._table_exists(cursor)
            cursor.execute(CREATE_TABLE_SQL)
            for statement in CREATE_TRIGGERS_SQL:
                cursor.execute(statement)
            if not existed:
                cursor.execute(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')")
            conn.commit()
        finally:
            conn.close()

    def drop_index(self) -> None:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            for trigger in ('field_values_ai', 'field_values_ad', 'field_values_au'):
                cursor.execute(f"DROP TRIGGER IF EXISTS {trigger}")
            cursor.execute(f"DROP TABLE IF EXISTS {FTS_TABLE}")
            conn.commit()
        finally:
            conn.close()

    def rebuild_index(self) -> int:
        """Rebuild the index from field_values.

        Returns:
            Number of field values indexed
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            if not self._table_exists(cursor):
                cursor.execute(CREATE_TABLE_SQL)
                for statement in CREATE_TRIGGERS_SQL:
                    cursor.execute(statement)
            cursor.execute(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')")
            cursor.execute("SELECT COUNT(*) FROM field_values")
            count = cursor.fetchone()[0]
            conn.commit()
            logger.info("Rebuilt full-text index over %d field values", count)
            return count
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def search(self, query: str, field_name: Optional[str] = None,
               limit: int = 50) -> List[SearchResult]:
        """Search field values.

        Args:
            query: Search text (supports FTS5 syntax)
            field_name: Restrict to one field (exact stored name)
            limit: Maximum number of results

        Returns:
            SearchResult objects sorted by relevance
        """
        if not query or not query.strip():
            return []

        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            if not self._table_exists(cursor):
                return self._fallback_search(query, field_name, limit)

            sql = f"""
                SELECT fv.parent_id, n.name, fv.field_name, fv.value_text,
                       bm25({FTS_TABLE}) AS rank,
                       snippet({FTS_TABLE}, 1, '<mark>', '</mark>', '...', 16) AS snippet
                FROM {FTS_TABLE}
                JOIN field_values fv ON fv.id = {FTS_TABLE}.rowid
                LEFT JOIN nodes n ON n.id = fv.parent_id
                WHERE {FTS_TABLE} MATCH ?
            """
            params: List[Any] = [prepare_match_query(query)]
            if field_name:
                sql += " AND fv.field_name = ?"
                params.append(field_name)
            sql += " ORDER BY rank LIMIT ?"
            params.append(limit)

            cursor.execute(sql, params)
            return [
                SearchResult(
                    node_id=row[0],
                    node_name=row[1],
                    field_name=row[2],
                    value_text=row[3],
                    rank=abs(row[4]),  # BM25 returns negative scores
                    snippet=row[5],
                )
                for row in cursor.fetchall()
            ]

        except sqlite3.OperationalError as e:
            if "syntax error" in str(e).lower() or "fts5" in str(e).lower():
                logger.warning("Invalid full-text query %r, falling back to LIKE: %s", query, e)
                return self._fallback_search(query, field_name, limit)
            raise
        finally:
            conn.close()

    def _fallback_search(self, query: str, field_name: Optional[str],
                         limit: int) -> List[SearchResult]:
        """Substring search used when the FTS query is invalid or the index is missing."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            sql = """
                SELECT fv.parent_id, n.name, fv.field_name, fv.value_text
                FROM field_values fv
                LEFT JOIN nodes n ON n.id = fv.parent_id
                WHERE fv.value_text LIKE ?
            """
            params: List[Any] = [f"%{query}%"]
            if field_name:
                sql += " AND fv.field_name = ?"
                params.append(field_name)
            sql += " ORDER BY fv.id LIMIT ?"
            params.append(limit)

            cursor.execute(sql, params)
            return [
                SearchResult(node_id=row[0], node_name=row[1], field_name=row[2],
                             value_text=row[3], rank=0.0)
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def get_stats(self) -> Dict[str, Any]:
        """Index statistics."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            if not self._table_exists(cursor):
                return {'exists': False, 'documents': 0}

            cursor.execute("SELECT COUNT(*) FROM field_values")
            count = cursor.fetchone()[0]
            return {
                'exists': True,
                'documents': count,
                'table_name': FTS_TABLE
            }
        finally:
            conn.close()
