"""
Literal coercion for comparisons.

Pure functions mapping (field type, operator, literal) to the value the
compiler binds into SQL. Nothing here touches the database.

    coerce_literal('Count', DataType.NUMBER, Operator.GT, '5')        -> 5.0
    coerce_literal('Due', DataType.DATE, Operator.LT, '2025-01-01')   -> 1735689600000
    coerce_literal('Done', DataType.CHECKBOX, Operator.EQ, 'yes')     -> True
"""

import calendar
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from ..errors import TypeCoercionError
from ..schema import DataType
from .ast import Operator


ORDERABLE_TYPES = frozenset({DataType.NUMBER, DataType.DATE})

TRUE_WORDS = ("true", "yes", "1")
FALSE_WORDS = ("false", "no", "0")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ][\d:.]+(Z|[+-]\d{2}:?\d{2})?)?$")
_RELATIVE = re.compile(r"^(\d+)([dwmy])$", re.IGNORECASE)


def check_operator(field_name: str, data_type: DataType, op: Operator, value) -> None:
    """Reject ordered comparisons on types without an ordering."""
    if op.is_ordered and data_type not in ORDERABLE_TYPES:
        raise TypeCoercionError(
            field_name, value,
            f"operator '{op.value}' requires a number or date field, "
            f"but this field is {data_type.value}",
        )


def coerce_number(field_name: str, value) -> float:
    if isinstance(value, bool):
        raise TypeCoercionError(field_name, value, "expected a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise TypeCoercionError(field_name, value, "expected a number") from None
    if not math.isfinite(number):
        raise TypeCoercionError(field_name, value, "expected a finite number")
    return number


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _subtract_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def resolve_relative_date(text: str, now: datetime) -> Optional[datetime]:
    """
    Resolve today, yesterday, Nd, Nw, Nm, Ny to a UTC midnight before now.

    Returns None when text is not a relative date.
    """
    now = now.astimezone(timezone.utc)
    today = _start_of_day(now)
    lowered = text.strip().lower()

    if lowered == "today":
        return today
    if lowered == "yesterday":
        return today - timedelta(days=1)

    match = _RELATIVE.match(lowered)
    if not match:
        return None

    amount, unit = int(match.group(1)), match.group(2)
    if unit == "d":
        return today - timedelta(days=amount)
    if unit == "w":
        return today - timedelta(weeks=amount)
    if unit == "m":
        return _subtract_months(today, amount)
    return _subtract_months(today, amount * 12)


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def parse_iso_datetime(text: str) -> datetime:
    """Parse ISO-8601 (date or datetime). Naive values are taken as UTC."""
    text = text.strip()
    if not _ISO_DATE.match(text):
        raise ValueError(f"not an ISO-8601 date: {text!r}")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def coerce_date(field_name: str, value, now: Optional[datetime] = None) -> int:
    """Coerce a literal to epoch milliseconds. Integers are taken as epoch ms."""
    if isinstance(value, bool):
        raise TypeCoercionError(field_name, value, "expected a date")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)

    text = str(value)
    relative = resolve_relative_date(text, now or datetime.now(timezone.utc))
    if relative is not None:
        return to_epoch_ms(relative)

    try:
        return to_epoch_ms(parse_iso_datetime(text))
    except ValueError:
        raise TypeCoercionError(
            field_name, value,
            "expected an ISO-8601 date (YYYY-MM-DD) or a relative date (7d, 2w, 1m, 1y)",
        ) from None


def coerce_checkbox(field_name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    raise TypeCoercionError(field_name, value, "expected true/false, yes/no or 1/0")


def coerce_literal(field_name: str, data_type: DataType, op: Operator, value,
                   now: Optional[datetime] = None) -> Union[str, float, int, bool]:
    """
    Coerce a comparison literal for a field of the given type.

    '~' always compares text, so its literal is never coerced.

    Raises:
        TypeCoercionError: the literal or operator does not fit the type
    """
    check_operator(field_name, data_type, op, value)

    if op == Operator.CONTAINS:
        return str(value)
    if data_type == DataType.NUMBER:
        return coerce_number(field_name, value)
    if data_type == DataType.DATE:
        return coerce_date(field_name, value, now)
    if data_type == DataType.CHECKBOX:
        return coerce_checkbox(field_name, value)
    return str(value)
