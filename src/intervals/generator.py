"""Five-minute interval generation for the current day.

Intervals run from local midnight up to and including the bucket that
contains ``now``.  The list is rebuilt on every call; nothing is cached.
"""

from __future__ import annotations

import logging
from datetime import datetime

from src.intervals.base import INTERVAL_WIDTH, Interval, format_time_label

logger = logging.getLogger("intervalsync.intervals.generator")

_STEP_MINUTES = int(INTERVAL_WIDTH.total_seconds() // 60)


def start_of_day(now: datetime) -> datetime:
    """Return local midnight of ``now``, keeping its tzinfo."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def round_down(now: datetime) -> datetime:
    """Truncate ``now`` to the previous multiple of five minutes."""
    return now.replace(
        minute=now.minute - now.minute % _STEP_MINUTES, second=0, microsecond=0
    )


def today_time_range(now: datetime) -> tuple[datetime, datetime]:
    """Return the read window for today: midnight through 23:59:59."""
    day_start = start_of_day(now)
    day_end = now.replace(hour=23, minute=59, second=59, microsecond=0)
    return day_start, day_end


def generate_intervals(now: datetime) -> list[Interval]:
    """Build today's five-minute buckets up to ``now``.

    Returns ``minutes_since_midnight(now) // 5 + 1`` intervals in ascending
    order, each exactly five minutes wide, with no gaps or overlaps.  The
    last interval is the one whose start equals ``now`` rounded down.

    A naive ``now`` is treated as local wall-clock time; an aware ``now``
    keeps its timezone on every interval.

    Args:
        now: The current instant.

    Returns:
        Ordered list of Interval.
    """
    day_start = start_of_day(now)
    last_start = round_down(now)

    intervals: list[Interval] = []
    cursor = day_start
    while cursor <= last_start:
        intervals.append(
            Interval(start=cursor, end=cursor + INTERVAL_WIDTH, label=format_time_label(cursor))
        )
        cursor += INTERVAL_WIDTH

    logger.debug(
        "Generated %d intervals for %s (last: %s)",
        len(intervals),
        day_start.date(),
        intervals[-1].label,
    )
    return intervals


def expected_interval_count(now: datetime) -> int:
    """Number of intervals ``generate_intervals(now)`` produces."""
    minutes = now.hour * 60 + now.minute
    return minutes // _STEP_MINUTES + 1

