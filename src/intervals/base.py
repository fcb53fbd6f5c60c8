"""Canonical data models for interval aggregation and persistence.

Samples come in from a data source, Intervals are the five-minute grouping
keys, IntervalCandidates are what the aggregator produces, and
IntervalRecords are what the upsert store owns.  These types are shared by
the generator, aggregator, store, sync scheduler and API layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from src.intervals.metrics import MetricDefinition

logger = logging.getLogger("intervalsync.intervals")

#: Width of every bucket.
INTERVAL_WIDTH = timedelta(minutes=5)

#: Device source recorded when the submitter does not name one.
DEFAULT_DEVICE_SOURCE = "health_connect"


class Reducer(str, Enum):
    """How a bucket's samples collapse to one value."""

    MEAN = "mean"  # continuous signals: heart rate, HRV
    SUM = "sum"    # counters: steps


# ---------------------------------------------------------------------------
# Ephemeral models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """A single raw observation from the data source.

    Attributes:
        timestamp: Instant the observation was taken.
        value:     Beats per minute, HRV milliseconds or a step count.
                   None when the source omitted the value.
    """

    timestamp: datetime
    value: float | None = None


@dataclass(frozen=True)
class Interval:
    """A half-open ``[start, end)`` five-minute bucket.

    Attributes:
        start: Bucket start, aligned to a minute-of-day multiple of 5.
        end:   ``start + 5 minutes``.
        label: Start time as ``h:mm AM/PM``.
    """

    start: datetime
    end: datetime
    label: str

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    @property
    def range_label(self) -> str:
        """Human-readable span, e.g. ``10:25 AM - 10:30 AM``."""
        return f"{format_time_label(self.start)} - {format_time_label(self.end)}"


@dataclass
class IntervalCandidate:
    """Aggregated value for one interval, before persistence.

    Attributes:
        interval:     The bucket this value belongs to.
        metric_value: Mean or sum of the samples in the bucket (0 when empty).
        sample_count: Number of samples that fell in the bucket.
    """

    interval: Interval
    metric_value: float
    sample_count: int

    def to_payload(self, metric: MetricDefinition) -> dict:
        """Serialize to the wire shape accepted by ``POST /api/{metric}``."""
        return {
            "intervalStart": _isoformat_utc(self.interval.start),
            "intervalEnd": _isoformat_utc(self.interval.end),
            "timeLabel": self.interval.label,
            metric.value_field: self.metric_value,
            "sampleCount": self.sample_count,
        }


# ---------------------------------------------------------------------------
# Persisted models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntervalKey:
    """Natural key of an IntervalRecord within one metric.

    Attributes:
        user_id:        Owner of the record.
        date:           Local calendar date the interval belongs to.
        interval_start: Start of the bucket.
    """

    user_id: str
    date: date
    interval_start: datetime


@dataclass
class IntervalFields:
    """Mutable fields replaced on every upsert of an existing key."""

    interval_end: datetime
    time_label: str
    metric_value: float = 0
    sample_count: int = 0
    device_source: str = DEFAULT_DEVICE_SOURCE


@dataclass
class IntervalWrite:
    """One pending upsert: key plus the fields to write under it."""

    key: IntervalKey
    fields: IntervalFields


@dataclass
class IntervalRecord:
    """A persisted five-minute bucket.

    At most one record exists per ``(user_id, metric, date, interval_start)``.
    ``sample_count == 0`` with ``metric_value == 0`` means the bucket was
    observed but held no data; an absent record means it was never synced.

    Attributes:
        user_id:        Owner of the record.
        metric:         Metric name ('steps', 'heart_rate', 'hrv').
        date:           Local calendar date of the interval.
        interval_start: Bucket start.
        interval_end:   Bucket end (start + 5 minutes).
        time_label:     ``h:mm AM/PM`` label of the start.
        metric_value:   Mean or sum at write time.
        sample_count:   Samples that produced metric_value.
        device_source:  Where the samples came from.
        created_at:     First write.
        updated_at:     Most recent write.
        record_id:      Surrogate identifier assigned by the store.
    """

    user_id: str
    metric: str
    date: date
    interval_start: datetime
    interval_end: datetime
    time_label: str
    metric_value: float = 0
    sample_count: int = 0
    device_source: str = DEFAULT_DEVICE_SOURCE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    record_id: UUID | None = None

    @property
    def key(self) -> IntervalKey:
        return IntervalKey(self.user_id, self.date, self.interval_start)

    @classmethod
    def from_row(cls, row: dict) -> IntervalRecord:
        """Build a record from a database row mapping."""
        return cls(
            user_id=row["user_id"],
            metric=row["metric"],
            date=row["date"],
            interval_start=row["interval_start"],
            interval_end=row["interval_end"],
            time_label=row["time_label"],
            metric_value=row["metric_value"],
            sample_count=row["sample_count"],
            device_source=row["device_source"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            record_id=row.get("record_id"),
        )

    def to_wire(self, metric: MetricDefinition) -> dict:
        """Serialize with camelCase names and the metric's value field."""
        return {
            "userId": self.user_id,
            "date": self.date.isoformat(),
            "intervalStart": _isoformat_utc(self.interval_start),
            "intervalEnd": _isoformat_utc(self.interval_end),
            "timeLabel": self.time_label,
            metric.value_field: self.metric_value,
            "sampleCount": self.sample_count,
            "deviceSource": self.device_source,
            "createdAt": _isoformat_utc(self.created_at),
            "updatedAt": _isoformat_utc(self.updated_at),
        }


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def format_time_label(moment: datetime) -> str:
    """Format a wall-clock time as ``h:mm AM/PM`` (no leading zero on the hour)."""
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {meridiem}"


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string to an aware datetime.

    Naive strings are assumed to be UTC.  Returns None if the value is
    missing or unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError, TypeError):
        logger.warning("Could not parse datetime string: %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _isoformat_utc(moment: datetime) -> str:
    if moment.tzinfo is None:
        return moment.isoformat()
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
