"""Interval schedule strings (``<n><unit>``) and next-run computation."""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from .time_utils import now_utc

SCHEDULE_PATTERN = re.compile(r"^(\d+)([smhdw])$")
DEFAULT_INTERVAL = timedelta(hours=1)
# Longer intervals are treated as malformed; they would overflow datetime arithmetic.
MAX_INTERVAL = timedelta(days=3650)

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}


def _interval_seconds(schedule: str | None) -> int | None:
    match = SCHEDULE_PATTERN.match((schedule or "").strip())
    if match is None:
        return None
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0 or seconds > MAX_INTERVAL.total_seconds():
        return None
    return seconds


def parse_interval(schedule: str | None) -> timedelta:
    """Return the interval for a schedule string, or one hour if it does not parse."""
    seconds = _interval_seconds(schedule)
    if seconds is None:
        return DEFAULT_INTERVAL
    return timedelta(seconds=seconds)


def is_valid_schedule(schedule: str | None) -> bool:
    return _interval_seconds(schedule) is not None


def calculate_next_run(schedule: str | None, from_time: datetime | None = None) -> datetime:
    start = from_time or now_utc()
    try:
        return start + parse_interval(schedule)
    except OverflowError:
        return datetime.max.replace(tzinfo=start.tzinfo)
