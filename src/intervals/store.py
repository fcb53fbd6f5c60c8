"""Upsert store: exactly one record per (user, metric, date, interval start).

``upsert`` is an atomic create-or-replace.  The first write for a key
creates the record with ``created_at == updated_at``.  Every later write
replaces the mutable fields and bumps ``updated_at``.  Batches are not
transactional: each record succeeds or fails on its own, and failures are
reported by index without rolling back the successes.

Two implementations share the contract:

    PostgresUpsertStore  INSERT ... ON CONFLICT DO UPDATE on a UNIQUE key
    InMemoryUpsertStore  dict keyed by the same tuple, guarded by a lock
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone, tzinfo
from typing import Sequence

import asyncpg

from src.intervals.base import (
    INTERVAL_WIDTH,
    IntervalCandidate,
    IntervalFields,
    IntervalKey,
    IntervalRecord,
    IntervalWrite,
)
from src.intervals.errors import PersistenceError
from src.intervals.metrics import MetricDefinition
from src.intervals.sync.dedup import build_upsert_query, interval_record_key
from src.services import database

logger = logging.getLogger("intervalsync.intervals.store")


@dataclass
class BatchFailure:
    """One record of a batch that could not be written.

    Attributes:
        index:          Position in the submitted batch.
        interval_start: Start of the interval that failed.
        error:          Reason reported by the store.
    """

    index: int
    interval_start: datetime
    error: str


@dataclass
class BatchResult:
    """Outcome of ``upsert_many``: persisted records plus per-record failures."""

    records: list[IntervalRecord] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.records) + len(self.failures)

    @property
    def all_failed(self) -> bool:
        return bool(self.failures) and not self.records


@dataclass
class DaySummary:
    """Records for one user and date, ascending by start, plus the date aggregate."""

    user_id: str
    metric: MetricDefinition
    date: date
    records: list[IntervalRecord]
    aggregate: float


def candidates_to_writes(
    user_id: str,
    candidates: Sequence[IntervalCandidate],
    device_source: str,
) -> list[IntervalWrite]:
    """Turn aggregator output into keyed writes.

    The record date is the local date of each interval start, so intervals
    carry the timezone they were generated in.
    """
    return [
        IntervalWrite(
            key=IntervalKey(
                user_id=user_id,
                date=c.interval.start.date(),
                interval_start=c.interval.start,
            ),
            fields=IntervalFields(
                interval_end=c.interval.end,
                time_label=c.interval.label,
                metric_value=c.metric_value,
                sample_count=c.sample_count,
                device_source=device_source,
            ),
        )
        for c in candidates
    ]


class UpsertStore(ABC):
    """Keyed upsert store for one metric."""

    def __init__(self, metric: MetricDefinition, tz: tzinfo = timezone.utc) -> None:
        self._metric = metric
        self._tz = tz

    @property
    def metric(self) -> MetricDefinition:
        return self._metric

    def dedup_key(self, key: IntervalKey) -> str:
        return interval_record_key(key.user_id, self._metric.name, key.date, key.interval_start)

    @abstractmethod
    async def upsert(self, key: IntervalKey, fields: IntervalFields) -> IntervalRecord:
        """Create the record for ``key`` or replace its mutable fields.

        Raises:
            PersistenceError: If the write is rejected or the store is unreachable.
        """

    @abstractmethod
    async def _fetch_day(self, user_id: str, day: date) -> list[IntervalRecord]:
        """Return the day's records sorted by interval_start ascending."""

    async def upsert_many(self, writes: Sequence[IntervalWrite]) -> BatchResult:
        """Issue one independent upsert per write.

        A failed record is reported in ``BatchResult.failures`` and does not
        stop the remaining writes or undo the ones already made.
        """
        result = BatchResult()
        for index, write in enumerate(writes):
            try:
                record = await self.upsert(write.key, write.fields)
            except PersistenceError as exc:
                logger.warning(
                    "Upsert failed for %s (batch index %d): %s",
                    self.dedup_key(write.key), index, exc,
                )
                result.failures.append(
                    BatchFailure(index=index, interval_start=write.key.interval_start, error=str(exc))
                )
                continue
            result.records.append(record)

        logger.info(
            "Upserted %d/%d %s intervals (%d failed)",
            len(result.records), result.attempted, self._metric.name, len(result.failures),
        )
        return result

    async def find_by_date(self, user_id: str, day: date) -> DaySummary:
        """Return the day's records ascending by start, with the date aggregate."""
        records = await self._fetch_day(user_id, day)
        return DaySummary(
            user_id=user_id,
            metric=self._metric,
            date=day,
            records=records,
            aggregate=self._metric.summarize([r.metric_value for r in records]),
        )

    async def find_today(self, user_id: str, now: datetime | None = None) -> DaySummary:
        """``find_by_date`` for the current date in the store's timezone."""
        current = now or datetime.now(self._tz)
        return await self.find_by_date(user_id, current.astimezone(self._tz).date())


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_TABLE = "interval_records"
_KEY_COLUMNS = ["user_id", "metric", "date", "interval_start"]
_MUTABLE_COLUMNS = ["interval_end", "time_label", "metric_value", "sample_count", "device_source"]

_UPSERT_SQL = build_upsert_query(_TABLE, _KEY_COLUMNS + _MUTABLE_COLUMNS, _KEY_COLUMNS)
_SELECT_DAY_SQL = (
    f"SELECT * FROM {_TABLE} "
    "WHERE user_id = $1 AND metric = $2 AND date = $3 "
    "ORDER BY interval_start ASC"
)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresUpsertStore(UpsertStore):
    """Upsert store backed by the interval_records table.

    Uniqueness is enforced by ``uq_interval_records_key``; concurrent writers
    for the same key serialise on that constraint inside Postgres, so the
    loser of a race updates the winner's row instead of inserting a second one.
    """

    def __init__(
        self,
        metric: MetricDefinition,
        pool: asyncpg.Pool | None = None,
        tz: tzinfo = timezone.utc,
    ) -> None:
        super().__init__(metric, tz)
        self._pool = pool

    async def upsert(self, key: IntervalKey, fields: IntervalFields) -> IntervalRecord:
        try:
            row = await database.fetchrow(
                _UPSERT_SQL,
                key.user_id,
                self._metric.name,
                key.date,
                key.interval_start,
                fields.interval_end,
                fields.time_label,
                float(fields.metric_value),
                fields.sample_count,
                fields.device_source,
                pool=self._pool,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}", key=self.dedup_key(key)) from exc
        if row is None:
            raise PersistenceError("Upsert returned no row", key=self.dedup_key(key))
        return IntervalRecord.from_row(dict(row))

    async def _fetch_day(self, user_id: str, day: date) -> list[IntervalRecord]:
        try:
            rows = await database.fetch(
                _SELECT_DAY_SQL, user_id, self._metric.name, day, pool=self._pool
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc
        return [IntervalRecord.from_row(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------


class InMemoryUpsertStore(UpsertStore):
    """Process-local store with the same key and constraint rules as Postgres.

    Used when no database is configured and in tests.  Writes are serialised
    by an asyncio lock, which plays the role of the UNIQUE constraint.
    """

    def __init__(self, metric: MetricDefinition, tz: tzinfo = timezone.utc) -> None:
        super().__init__(metric, tz)
        self._records: dict[str, IntervalRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _check_constraints(self, key: IntervalKey, fields: IntervalFields) -> None:
        if fields.interval_end - key.interval_start != INTERVAL_WIDTH:
            raise PersistenceError(
                "ck_interval_records_width: interval_end must be interval_start + 5 minutes",
                key=self.dedup_key(key),
            )
        if fields.sample_count < 0:
            raise PersistenceError(
                "ck_interval_records_sample_count: sample_count must be >= 0",
                key=self.dedup_key(key),
            )

    async def upsert(self, key: IntervalKey, fields: IntervalFields) -> IntervalRecord:
        self._check_constraints(key, fields)
        dedup_key = self.dedup_key(key)
        async with self._lock:
            now = datetime.now(timezone.utc)
            existing = self._records.get(dedup_key)
            if existing is None:
                record = IntervalRecord(
                    user_id=key.user_id,
                    metric=self._metric.name,
                    date=key.date,
                    interval_start=key.interval_start,
                    interval_end=fields.interval_end,
                    time_label=fields.time_label,
                    metric_value=fields.metric_value,
                    sample_count=fields.sample_count,
                    device_source=fields.device_source,
                    created_at=now,
                    updated_at=now,
                    record_id=uuid.uuid4(),
                )
                self._records[dedup_key] = record
            else:
                existing.interval_end = fields.interval_end
                existing.time_label = fields.time_label
                existing.metric_value = fields.metric_value
                existing.sample_count = fields.sample_count
                existing.device_source = fields.device_source
                existing.updated_at = now
                record = existing
        return replace(record)

    async def _fetch_day(self, user_id: str, day: date) -> list[IntervalRecord]:
        records = [
            r for r in self._records.values()
            if r.user_id == user_id and r.date == day
        ]
        return sorted(records, key=lambda r: r.interval_start)


def build_stores(
    metrics: Sequence[MetricDefinition],
    *,
    use_database: bool,
    tz: tzinfo = timezone.utc,
) -> dict[str, UpsertStore]:
    """Create one store per metric, keyed by metric name."""
    stores: dict[str, UpsertStore] = {}
    for metric in metrics:
        if use_database:
            stores[metric.name] = PostgresUpsertStore(metric, tz=tz)
        else:
            stores[metric.name] = InMemoryUpsertStore(metric, tz=tz)
    return stores
