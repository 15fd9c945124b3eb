"""
Database interface for tagq.

Wraps a SQLAlchemy engine over a single SQLite file that holds both the
tag schema tables and the workspace data tables. The write helpers
(add_tag, add_node, set_field, ...) are what import tooling and tests use to
populate a store; the query pipeline itself only reads.
"""
import logging
from pathlib import Path
from typing import Optional, Generator, Any, Dict, Iterable, List, Union
from contextlib import contextmanager

from sqlalchemy import create_engine, select, func, delete, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from tagq.config import TagqConfig
from tagq.fts import FieldValueIndex
from tagq.models import (
    Base, TagMetadata, TagField, TagParent, Node, TagApplication, FieldValue,
)
from tagq.schema import normalize_name

logger = logging.getLogger(__name__)


class Database:
    """
    Store for one workspace.

    Examples:
        Database()                          # database from default config
        Database(path="workspace.db")       # SQLite file
        Database(url="sqlite:///work.db")   # explicit URL
    """

    def __init__(self, path: Optional[str] = None, url: Optional[str] = None,
                 config: Optional[TagqConfig] = None):
        """
        Initialize database connection.

        Args:
            path: Database file path. Uses config.database if not provided.
            url: Full SQLite database URL (overrides path).
            config: Configuration value; defaults to TagqConfig()
        """
        self.config = config or TagqConfig()

        if url:
            self.url = url
        elif path:
            self.url = f"sqlite:///{Path(path)}"
        else:
            self.url = self.config.get_database_url()

        if not self.url.startswith("sqlite:"):
            raise ValueError(f"Only SQLite databases are supported: {self.url}")

        database = make_url(self.url).database
        self.path = Path(database) if database and database != ":memory:" else None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            self.url,
            connect_args={
                "check_same_thread": False,
                "timeout": self.config.connection_timeout,
            },
            poolclass=NullPool,  # NullPool for thread-safe SQLite access
            echo=self.config.database_echo
        )
        event.listen(self.engine, "connect", self._configure_sqlite)

        self.Session = sessionmaker(bind=self.engine, autoflush=False)

        Base.metadata.create_all(self.engine)
        self.fts: Optional[FieldValueIndex] = None
        if self.path is not None:
            self.fts = FieldValueIndex(str(self.path))
            self.fts.create_index()

        logger.debug("Opened database %s", self.url)

    @staticmethod
    def _configure_sqlite(dbapi_conn, connection_record):
        """Configure SQLite for concurrent readers."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA cache_size = -64000")  # 64MB cache
        cursor.execute("PRAGMA temp_store = MEMORY")
        cursor.close()

    @contextmanager
    def session(self, expire_on_commit: bool = True) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy session with automatic commit/rollback
        """
        session = self.Session()
        session.expire_on_commit = expire_on_commit
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # Schema writes
    # =========================================================================

    def add_tag(self, tag_id: str, name: str, description: Optional[str] = None,
                color: Optional[str] = None) -> None:
        with self.session() as session:
            session.merge(TagMetadata(
                tag_id=tag_id,
                tag_name=name,
                normalized_name=normalize_name(name),
                description=description,
                color=color,
            ))

    def add_tag_field(self, tag_id: str, field_name: str, order: Optional[int] = None,
                      data_type: Optional[str] = None,
                      field_label_id: Optional[str] = None) -> None:
        """Declare a field on a tag. order defaults to after existing fields."""
        with self.session() as session:
            tag = session.get(TagMetadata, tag_id)
            if tag is None:
                raise ValueError(f"Unknown tag id: {tag_id}")
            if order is None:
                order = session.scalar(
                    select(func.count(TagField.id)).where(TagField.tag_id == tag_id)
                )
            session.add(TagField(
                tag_id=tag_id,
                tag_name=tag.tag_name,
                field_name=field_name,
                field_label_id=field_label_id,
                field_order=order,
                normalized_name=normalize_name(field_name),
                inferred_data_type=data_type,
            ))

    def add_tag_parent(self, child_tag_id: str, parent_tag_id: str) -> None:
        with self.session() as session:
            session.add(TagParent(child_tag_id=child_tag_id, parent_tag_id=parent_tag_id))

    # =========================================================================
    # Data writes
    # =========================================================================

    def add_node(self, node_id: str, name: Optional[str] = None,
                 created: Optional[int] = None, updated: Optional[int] = None,
                 parent_id: Optional[str] = None, node_type: str = "node",
                 done_at: Optional[int] = None) -> None:
        with self.session() as session:
            session.merge(Node(
                id=node_id,
                name=name,
                parent_id=parent_id,
                node_type=node_type,
                created=created,
                updated=updated if updated is not None else created,
                done_at=done_at,
            ))

    def apply_tag(self, node_id: str, tag_id: str, tuple_node_id: Optional[str] = None) -> None:
        """Record that node_id carries tag_id."""
        with self.session() as session:
            tag = session.get(TagMetadata, tag_id)
            session.add(TagApplication(
                tuple_node_id=tuple_node_id,
                data_node_id=node_id,
                tag_id=tag_id,
                tag_name=tag.tag_name if tag else tag_id,
            ))

    def set_field(self, node_id: str, field_name: str,
                  values: Union[str, Iterable[str]],
                  field_def_id: Optional[str] = None,
                  created: Optional[int] = None) -> None:
        """Replace the stored values of one field on one node."""
        if isinstance(values, str):
            values = [values]
        with self.session() as session:
            session.execute(
                delete(FieldValue).where(
                    FieldValue.parent_id == node_id,
                    FieldValue.field_name == field_name,
                )
            )
            for order, value in enumerate(values):
                session.add(FieldValue(
                    parent_id=node_id,
                    field_def_id=field_def_id,
                    field_name=field_name,
                    value_text=str(value),
                    value_order=order,
                    created=created,
                ))

    # =========================================================================
    # Reads
    # =========================================================================

    def get_node(self, node_id: str) -> Optional[Node]:
        with self.session(expire_on_commit=False) as session:
            return session.get(Node, node_id)

    def node_tags(self, node_ids: List[str]) -> Dict[str, List[str]]:
        """Tag names per node id."""
        result: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        if not node_ids:
            return result
        with self.session() as session:
            rows = session.execute(
                select(TagApplication.data_node_id, TagApplication.tag_name)
                .where(TagApplication.data_node_id.in_(node_ids))
                .order_by(TagApplication.data_node_id, TagApplication.tag_name)
            )
            for node_id, tag_name in rows:
                if tag_name not in result[node_id]:
                    result[node_id].append(tag_name)
        return result

    def stats(self) -> Dict[str, Any]:
        """Row counts per table plus file size."""
        with self.session() as session:
            stats = {
                'tags': session.scalar(select(func.count()).select_from(TagMetadata)),
                'tag_fields': session.scalar(select(func.count()).select_from(TagField)),
                'tag_parents': session.scalar(select(func.count()).select_from(TagParent)),
                'nodes': session.scalar(select(func.count()).select_from(Node)),
                'tag_applications': session.scalar(select(func.count()).select_from(TagApplication)),
                'field_values': session.scalar(select(func.count()).select_from(FieldValue)),
            }

        if self.path is not None and self.path.exists():
            stats['database_size'] = self.path.stat().st_size
        stats['database_path'] = str(self.path) if self.path else self.url
        return stats


def get_db(path: Optional[str] = None, config: Optional[TagqConfig] = None) -> Database:
    """Open the database at path, or the configured one."""
    return Database(path=path, config=config)
