"""
Aggregation over tagged nodes.

Counts the nodes carrying a tag, optionally filtered and grouped:

    engine = AggregationEngine(db)
    engine.aggregate('todo')                          # {total: 5, groups: {}}
    engine.aggregate('todo', group_by='Status')       # {total: 5, groups: {'Done': 2, ...}}
    engine.aggregate('todo', 'Status', 'Priority > 2', show_percent=True)
    engine.aggregate('meeting', period='month')       # by creation month

Groups are keyed by the raw stored text of the field value. Values that
differ only in case or formatting ("Done" vs "done") are separate groups.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy import Integer, String, and_, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from tagq.config import TagqConfig
from tagq.db import Database
from tagq.errors import ExecutionError, FieldNotFoundError
from tagq.models import FieldValue, Node
from tagq.query.ast import WILDCARD, FilterExpr
from tagq.query.compiler import QueryCompiler, membership
from tagq.query.parser import parse_filter
from tagq.query.results import AggregateResult
from tagq.schema import SchemaResolver, SchemaSnapshot

logger = logging.getLogger(__name__)

NONE_GROUP = "(none)"

PERIODS = ("day", "week", "month", "quarter", "year")

_PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
    "year": "%Y",
}


def period_key(period: str):
    """SQL expression bucketing nodes.created (epoch ms) into a period label."""
    seconds = Node.created / 1000
    if period == "quarter":
        month = cast(func.strftime("%m", seconds, "unixepoch"), Integer)
        year = func.strftime("%Y", seconds, "unixepoch", type_=String)
        return year.concat("-Q").concat(cast((month + 2) // 3, String))
    if period not in _PERIOD_FORMATS:
        raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
    return func.strftime(_PERIOD_FORMATS[period], seconds, "unixepoch")


class AggregationEngine:
    """
    Computes totals and grouped counts for a tag.

    Args:
        db: store to aggregate over
        config: explicit configuration; max_groups caps the number of
            groups returned when no top is given
        now: anchor for relative dates in filters
    """

    def __init__(self, db: Database, config: Optional[TagqConfig] = None,
                 now: Optional[datetime] = None):
        self.db = db
        self.config = config or db.config
        self.now = now

    def aggregate(
        self,
        tag_name: str,
        group_by: Optional[str] = None,
        filter: Optional[Union[str, FilterExpr]] = None,
        *,
        period: Optional[str] = None,
        top: Optional[int] = None,
        show_percent: bool = False,
    ) -> AggregateResult:
        """
        Count nodes carrying tag_name.

        Args:
            tag_name: target tag ('*' for every node)
            group_by: field to group by, resolved against the tag's fields
            filter: filter expression or filter text ("Status = Done")
            period: group by creation time instead (day/week/month/quarter/year)
            top: keep only the largest N groups
            show_percent: include each group's share of total

        Raises:
            SchemaError: unknown tag or group-by field
            ExecutionError: the store failed the statement
        """
        if group_by and period:
            raise ValueError("group_by and period cannot be combined")
        if isinstance(filter, str):
            filter = parse_filter(filter)

        try:
            with self.db.session() as session:
                snapshot = SchemaSnapshot.load(session)
        except SQLAlchemyError as e:
            raise ExecutionError(f"Loading schema failed: {e}", original=e) from e
        resolver = SchemaResolver(snapshot, strict=True)
        compiler = QueryCompiler(resolver, self.config, self.now)

        tag_id: Optional[str] = None
        conditions = []
        if tag_name != WILDCARD:
            tag_id = resolver.resolve_tag(tag_name).tag_id
            conditions.append(membership([tag_id]))
        if filter is not None:
            conditions.append(compiler.compile_filter(filter, tag_id))

        stored_names: List[str] = []
        if group_by:
            stored_names = self._group_field_names(resolver, tag_id, group_by)

        try:
            with self.db.session() as session:
                total = session.scalar(select(func.count(Node.id)).where(*conditions))
                if group_by:
                    rows = self._group_by_field(session, conditions, stored_names)
                elif period:
                    rows = self._group_by_period(session, conditions, period)
                else:
                    rows = []
        except SQLAlchemyError as e:
            raise ExecutionError(f"Aggregation failed: {e}", original=e) from e

        return self._build_result(total or 0, rows, top, show_percent)

    @staticmethod
    def _group_field_names(resolver: SchemaResolver, tag_id: Optional[str],
                           group_by: str) -> List[str]:
        if tag_id is not None:
            return [resolver.resolve_field(tag_id, group_by, strict=True).original_name]

        names = []
        for _, f in resolver.find_field_everywhere(group_by):
            if f.original_name not in names:
                names.append(f.original_name)
        if not names:
            raise FieldNotFoundError(group_by)
        return names

    @staticmethod
    def _group_by_field(session, conditions, stored_names: List[str]) -> List[Tuple[str, int]]:
        fv = aliased(FieldValue)
        key = func.coalesce(fv.value_text, NONE_GROUP)
        count = func.count(func.distinct(Node.id))
        stmt = (
            select(key, count)
            .select_from(Node)
            .outerjoin(fv, and_(
                fv.parent_id == Node.id,
                fv.field_name.in_(stored_names),
                fv.value_text != "",
            ))
            .where(*conditions)
            .group_by(key)
            .order_by(count.desc(), key.asc())
        )
        return [(row[0], row[1]) for row in session.execute(stmt)]

    @staticmethod
    def _group_by_period(session, conditions, period: str) -> List[Tuple[str, int]]:
        key = func.coalesce(period_key(period), NONE_GROUP)
        count = func.count(Node.id)
        stmt = (
            select(key, count)
            .where(*conditions)
            .group_by(key)
            .order_by(key.asc())
        )
        return [(row[0], row[1]) for row in session.execute(stmt)]

    def _build_result(self, total: int, rows: List[Tuple[str, int]],
                      top: Optional[int], show_percent: bool) -> AggregateResult:
        limit = top if top is not None else self.config.max_groups
        warning = None
        group_count = len(rows)
        if limit and group_count > limit:
            warning = f"Showing top {limit} of {group_count} groups"
            logger.warning(warning)
            rows = sorted(rows, key=lambda r: (-r[1], r[0]))[:limit]

        groups = {key: count for key, count in rows}
        percentages = None
        if show_percent:
            percentages = {
                key: round(count * 100.0 / total, 1) if total else 0.0
                for key, count in groups.items()
            }

        return AggregateResult(
            total=total,
            groups=groups,
            percentages=percentages,
            group_count=group_count,
            warning=warning,
        )


def aggregate(db: Database, tag_name: str, group_by: Optional[str] = None,
              filter: Optional[Union[str, FilterExpr]] = None, **kwargs) -> AggregateResult:
    """Convenience wrapper around AggregationEngine.aggregate."""
    return AggregationEngine(db).aggregate(tag_name, group_by, filter, **kwargs)
