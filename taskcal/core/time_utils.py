"""Wall-clock time helpers for taskcal.

All event times are local wall-clock values held as naive ``datetime`` objects.
Timezone information on input is dropped, never converted.
"""

from __future__ import annotations

import datetime
import logging
import os
from typing import Any

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "TASKCAL_TEST_TIME"

_EPOCH = datetime.datetime(1970, 1, 1)


def now_local() -> datetime.datetime:
    """Return the current wall-clock time as a naive datetime.

    Can be overridden for testing via the TASKCAL_TEST_TIME environment variable
    (ISO 8601, e.g. "2024-01-31T09:00:00").

    Returns:
        Current local time without tzinfo
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            return to_wall_clock(date_parser.isoparse(test_time))
        except (ValueError, OverflowError) as e:
            logger.warning("Invalid %s: %s, error: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now()


def to_wall_clock(dt: datetime.datetime) -> datetime.datetime:
    """Drop tzinfo from a datetime, keeping its wall-clock fields."""
    if dt.tzinfo is not None:
        return dt.replace(tzinfo=None)
    return dt


def parse_timestamp(value: Any) -> datetime.datetime | None:
    """Parse a timestamp from a datetime, date or ISO-8601 string.

    Args:
        value: Candidate timestamp value

    Returns:
        Naive wall-clock datetime, or None when the value is missing or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return to_wall_clock(value)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return to_wall_clock(date_parser.isoparse(text))
        except (ValueError, OverflowError):
            pass
        try:
            return to_wall_clock(date_parser.parse(text))
        except (ValueError, OverflowError):
            return None
    return None


def epoch_millis(dt: datetime.datetime) -> int:
    """Milliseconds since the epoch for a wall-clock value, read as UTC.

    Reading the naive value as UTC keeps generated ids independent of the
    host timezone.
    """
    delta = to_wall_clock(dt) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def floor_to_minute(dt: datetime.datetime) -> datetime.datetime:
    """Truncate a datetime to the start of its minute."""
    return dt.replace(second=0, microsecond=0)
