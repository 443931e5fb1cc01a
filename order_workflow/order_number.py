"""
Human-readable order numbers: DS + YYMMDD (shop local day) + 3-digit daily sequence.

Allocation is a pure function of the numbers already issued today. Two
concurrent allocations can compute the same number; the store's UNIQUE
constraint rejects the loser, which re-allocates (see db.create_order).
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from order_workflow.errors import SequenceExhaustedError

DEFAULT_PREFIX = "DS"
SEQUENCE_DIGITS = 3
MAX_SEQUENCE = 10 ** SEQUENCE_DIGITS - 1


def order_number_prefix(day: date, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}{day:%y%m%d}"


def allocate(existing_numbers: Iterable[str], day: date, prefix: str = DEFAULT_PREFIX) -> str:
    """Next order number for `day`, one past the highest sequence already issued that day."""
    day_prefix = order_number_prefix(day, prefix)
    highest = 0
    for number in existing_numbers:
        if not number or not number.startswith(day_prefix):
            continue
        suffix = number[len(day_prefix):]
        if len(suffix) == SEQUENCE_DIGITS and suffix.isdigit():
            highest = max(highest, int(suffix))
    sequence = highest + 1
    if sequence > MAX_SEQUENCE:
        raise SequenceExhaustedError(f"no order numbers left for {day_prefix}")
    return f"{day_prefix}{sequence:0{SEQUENCE_DIGITS}d}"


def is_valid_order_number(value: object, prefix: str = DEFAULT_PREFIX) -> bool:
    """True for `{prefix}YYMMDDnnn`."""
    if not isinstance(value, str):
        return False
    pattern = rf"{re.escape(prefix)}\d{{6}}\d{{{SEQUENCE_DIGITS}}}"
    return re.fullmatch(pattern, value) is not None


def local_today(tz_name: str, now: datetime | None = None) -> date:
    tz = ZoneInfo(tz_name)
    now = now.astimezone(tz) if now is not None else datetime.now(tz)
    return now.date()


def day_window(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """[start, end) of the local calendar day as aware datetimes."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end
