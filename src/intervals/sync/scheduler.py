"""Periodic sync scheduler for interval data.

Drives one user's sync workflow:
1. Initialize the data source and request read permissions
2. Read today's raw records for each metric
3. Generate today's five-minute intervals and aggregate the samples
4. Submit the candidates (one independent upsert per interval)
5. Record the completion time for the resume check

State machine::

    IDLE → INITIALIZING → READY ⇄ SYNCING
                 ↓                  ↓
               FAILED ←─────────────┘   (source unavailable; next trigger retries)

Triggers:
    periodic  every ``period_seconds`` (300) while started
    resume    ``on_resume()`` when the last success is older than
              ``resume_threshold_seconds`` (240)
    manual    ``sync_now()``

At most one cycle runs at a time; a trigger that arrives mid-cycle is
dropped, not queued.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Sequence

from src.intervals.aggregator import aggregate, extract_samples
from src.intervals.base import Interval
from src.intervals.config_loader import SyncConfig, get_sync_config
from src.intervals.errors import (
    IntervalSyncError,
    NetworkError,
    SourceUnavailableError,
)
from src.intervals.generator import generate_intervals, today_time_range
from src.intervals.metrics import MetricDefinition
from src.intervals.sources.base import DataSource
from src.intervals.sync.client import Submitter

logger = logging.getLogger("intervalsync.sync.scheduler")


class SyncState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    SYNCING = "syncing"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a single sync cycle.

    Attributes:
        user_id:       Whose data was synced.
        date:          Local date synced (None if the cycle never started).
        records_saved: metric name → records persisted.
        failures:      Per-record or per-metric failure messages.
        status:        'success', 'partial', 'error' or 'skipped'.
        error:         Summary error message when status is 'error'.
        synced_at:     UTC timestamp of completion.
    """

    user_id: str
    date: date | None = None
    records_saved: dict[str, int] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)
    status: str = "success"
    error: str | None = None
    synced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_saved(self) -> int:
        return sum(self.records_saved.values())


class SyncScheduler:
    """Run fetch → aggregate → submit cycles for one user.

    Usage::

        scheduler = SyncScheduler(
            source=HealthConnectBridgeSource("http://127.0.0.1:8765"),
            submitter=IntervalApiClient(settings.api_endpoints),
            user_id="default_user",
            tz=settings.tzinfo,
        )
        await scheduler.start()      # initialize, sync once, then every 5 minutes
        ...
        await scheduler.on_resume()  # process returned to the foreground
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        source: DataSource,
        submitter: Submitter,
        user_id: str,
        *,
        metrics: Sequence[MetricDefinition] | None = None,
        config: SyncConfig | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            source:    Where raw records are read from.
            submitter: Where aggregated candidates are sent.
            user_id:   Identity every record is written under.
            metrics:   Metrics to sync each cycle (defaults to the config's).
            config:    Cadence and timeouts (defaults to sync_config.yaml).
            tz:        Timezone that defines "today" and interval boundaries.
            clock:     Returns the current aware datetime (for testing).
            monotonic: Returns monotonic seconds for staleness checks (for testing).
        """
        self._source = source
        self._submitter = submitter
        self._user_id = user_id
        self._config = config or get_sync_config()
        self._metrics = list(metrics) if metrics is not None else self._config.metric_definitions()
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._monotonic = monotonic

        self._state = SyncState.IDLE
        self._syncing = False
        self._stopped = False
        self._last_success: float | None = None
        self._timer: asyncio.Task | None = None
        self._current: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def seconds_since_last_success(self) -> float | None:
        if self._last_success is None:
            return None
        return self._monotonic() - self._last_success

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Acquire the data source and its read permissions.

        Raises:
            SourceUnavailableError: Initialization failed or any permission
                was denied.  The scheduler is left in FAILED.
        """
        self._state = SyncState.INITIALIZING
        try:
            ok = await asyncio.wait_for(
                self._source.initialize(), timeout=self._config.source_timeout_seconds
            )
            if not ok:
                raise SourceUnavailableError("Data source failed to initialize")

            record_types = [m.record_type for m in self._metrics]
            statuses = await asyncio.wait_for(
                self._source.request_permission(record_types),
                timeout=self._config.source_timeout_seconds,
            )
            denied = [s.record_type for s in statuses if not s.granted]
            if denied:
                raise SourceUnavailableError(f"Read permission denied for: {', '.join(denied)}")
        except asyncio.TimeoutError as exc:
            self._state = SyncState.FAILED
            raise SourceUnavailableError("Data source initialization timed out") from exc
        except SourceUnavailableError:
            self._state = SyncState.FAILED
            raise

        self._state = SyncState.READY
        logger.info("Sync source ready for %s (%d metrics)", self._user_id, len(self._metrics))

    async def start(self) -> SyncResult:
        """Initialize, run one immediate cycle, and start the periodic timer.

        Returns:
            Result of the immediate cycle.

        Raises:
            SourceUnavailableError: If initialization fails; no timer is started.
        """
        if self.is_running:
            raise RuntimeError("SyncScheduler already started")
        self._stopped = False
        await self.initialize()
        self._timer = asyncio.create_task(self._run_periodic(), name=f"interval-sync:{self._user_id}")
        logger.info(
            "Auto-sync enabled for %s every %.0fs", self._user_id, self._config.period_seconds
        )
        return await self.sync_now()

    async def stop(self) -> None:
        """Stop the periodic timer and wait for any in-flight cycle to finish.

        No trigger fires after this returns: later on_resume() and
        sync_now() calls are ignored until start() is called again.
        """
        self._stopped = True
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if self._current is not None and not self._current.done():
            await asyncio.shield(self._current)
        logger.info("Auto-sync stopped for %s", self._user_id)

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self._config.period_seconds)
            logger.info("Periodic sync triggered for %s", self._user_id)
            cycle = asyncio.create_task(self.sync_now())
            try:
                # shield so stop() cancels the wait, never the cycle itself
                await asyncio.shield(cycle)
            except asyncio.CancelledError:
                raise
            except Exception:
                # the loop must outlive any single cycle
                logger.exception("Unexpected error in periodic sync for %s", self._user_id)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def on_resume(self) -> SyncResult | None:
        """Handle a return to the foreground.

        Syncs immediately if the last successful sync is older than the
        resume threshold (or there has been none).  Otherwise does nothing
        and the next periodic tick applies.
        """
        if self._stopped:
            logger.debug("Resume ignored for %s: auto-sync stopped", self._user_id)
            return None
        elapsed = self.seconds_since_last_success()
        if elapsed is not None and elapsed <= self._config.resume_threshold_seconds:
            logger.debug("Resume after %.0fs: within threshold, no sync", elapsed)
            return None
        logger.info(
            "Resume after %s: syncing immediately",
            "no previous sync" if elapsed is None else f"{elapsed:.0f}s",
        )
        return await self.sync_now()

    async def sync_now(self) -> SyncResult:
        """Run one cycle unless one is already in flight.

        Returns:
            The cycle's SyncResult, or a 'skipped' result if a cycle was
            already running or the scheduler has been stopped.
        """
        if self._stopped:
            logger.info("Auto-sync stopped for %s; trigger dropped", self._user_id)
            return SyncResult(user_id=self._user_id, status="skipped")
        if self._syncing:
            logger.info("Sync already in progress for %s; trigger dropped", self._user_id)
            return SyncResult(user_id=self._user_id, status="skipped")

        self._syncing = True
        self._current = asyncio.current_task()
        try:
            return await self._run_cycle()
        finally:
            if self._state is SyncState.SYNCING:
                # cancelled mid-cycle
                self._state = SyncState.READY
            self._syncing = False
            self._current = None

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self) -> SyncResult:
        result = SyncResult(user_id=self._user_id)

        if self._state in (SyncState.IDLE, SyncState.FAILED):
            try:
                await self.initialize()
            except SourceUnavailableError as exc:
                logger.error("Sync cycle aborted for %s: %s", self._user_id, exc)
                result.status = "error"
                result.error = str(exc)
                return result

        self._state = SyncState.SYNCING
        try:
            source_failed = await self._sync_metrics(result)
        except Exception as exc:
            logger.exception("Sync cycle for %s failed unexpectedly", self._user_id)
            result.status = "error"
            result.error = f"{type(exc).__name__}: {exc}"
            result.synced_at = datetime.now(timezone.utc)
            self._state = SyncState.READY
            return result

        if result.status != "error":
            self._last_success = self._monotonic()
        self._state = SyncState.FAILED if source_failed and result.status == "error" else SyncState.READY

        logger.info(
            "Sync complete: %s → %d records, status=%s",
            self._user_id, result.total_saved, result.status,
        )
        return result

    async def _sync_metrics(self, result: SyncResult) -> bool:
        """Sync every metric into ``result``.  Returns True if the source failed."""
        now = self._clock()
        result.date = now.date()
        intervals = generate_intervals(now)
        day_start, day_end = today_time_range(now)

        errors: list[str] = []
        source_failed = False
        for metric in self._metrics:
            try:
                saved, failures = await self._sync_metric(metric, intervals, day_start, day_end)
            except SourceUnavailableError as exc:
                source_failed = True
                errors.append(f"{metric.name}: {exc}")
                logger.error("Reading %s for %s failed: %s", metric.name, self._user_id, exc)
                continue
            except IntervalSyncError as exc:
                errors.append(f"{metric.name}: {exc}")
                logger.error("Submitting %s for %s failed: %s", metric.name, self._user_id, exc)
                continue
            result.records_saved[metric.name] = saved
            result.failures.extend(f"{metric.name} {f}" for f in failures)

        result.failures.extend(errors)
        result.synced_at = datetime.now(timezone.utc)

        if errors and not result.records_saved:
            result.status = "error"
            result.error = "; ".join(errors[:3])
        elif errors or result.failures:
            result.status = "partial"
        else:
            result.status = "success"
        return source_failed

    async def _sync_metric(
        self,
        metric: MetricDefinition,
        intervals: list[Interval],
        day_start: datetime,
        day_end: datetime,
    ) -> tuple[int, list[str]]:
        try:
            records = await asyncio.wait_for(
                self._source.read_records(metric.record_type, day_start, day_end),
                timeout=self._config.source_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise SourceUnavailableError(
                f"Reading {metric.record_type} timed out after {self._config.source_timeout_seconds}s"
            ) from exc

        samples = extract_samples(metric, records)
        candidates = aggregate(samples, intervals, metric.reducer)
        logger.debug(
            "%s: %d records → %d samples → %d intervals",
            metric.name, len(records), len(samples), len(candidates),
        )

        budget = self._submitter.submit_budget(self._config.submit_timeout_seconds)
        try:
            outcome = await asyncio.wait_for(
                self._submitter.submit(
                    metric, self._user_id, candidates, self._config.device_source
                ),
                timeout=budget,
            )
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"Submitting {metric.name} timed out after {budget:g}s"
            ) from exc
        return outcome.saved, outcome.failures
