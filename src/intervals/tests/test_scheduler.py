"""Tests for the periodic sync scheduler."""

from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from src.intervals.base import IntervalCandidate
from src.intervals.config_loader import SyncConfig
from src.intervals.errors import PersistenceError, SourceUnavailableError
from src.intervals.metrics import HRV, STEPS, MetricDefinition
from src.intervals.sources.static import StaticSource
from src.intervals.store import InMemoryUpsertStore
from src.intervals.sync.client import StoreSubmitter, SubmitOutcome, Submitter
from src.intervals.sync.scheduler import SyncScheduler, SyncState
from src.intervals.tests.conftest import TEST_DATE, TEST_NOW, TEST_USER_ID


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class RecordingSubmitter(Submitter):
    """Delegates to a StoreSubmitter and records every call.

    ``gate`` (if set) holds each submit until released; ``fail_on`` raises
    the given exception on the listed call numbers (1-based).
    """

    def __init__(
        self,
        inner: Submitter,
        *,
        gate: asyncio.Event | None = None,
        fail_on: dict[int, Exception] | None = None,
        delay: float = 0,
    ) -> None:
        self.inner = inner
        self.gate = gate
        self.fail_on = fail_on or {}
        self.delay = delay
        self.calls: list[str] = []

    async def submit(
        self,
        metric: MetricDefinition,
        user_id: str,
        candidates: Sequence[IntervalCandidate],
        device_source: str,
    ) -> SubmitOutcome:
        self.calls.append(metric.name)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        exc = self.fail_on.get(len(self.calls))
        if exc is not None:
            raise exc
        return await self.inner.submit(metric, user_id, candidates, device_source)


class SlowSource(StaticSource):
    async def read_records(self, record_type, start_time, end_time):
        await asyncio.sleep(5)
        return []


def _scheduler(
    source: StaticSource,
    submitter: Submitter,
    config: SyncConfig,
    monotonic: FakeMonotonic | None = None,
) -> SyncScheduler:
    return SyncScheduler(
        source=source,
        submitter=submitter,
        user_id=TEST_USER_ID,
        config=config,
        clock=lambda: TEST_NOW,
        monotonic=monotonic or FakeMonotonic(),
    )


# ---------------------------------------------------------------------------
# Single cycles
# ---------------------------------------------------------------------------


class TestSyncNow:
    @pytest.mark.asyncio
    async def test_full_cycle_persists_every_interval(
        self, static_source, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)

        result = await scheduler.sync_now()

        assert result.status == "success"
        assert result.date == TEST_DATE
        assert result.records_saved == {"steps": 126, "heart_rate": 126, "hrv": 126}
        assert result.total_saved == 378
        assert scheduler.state is SyncState.READY
        assert static_source.read_calls == ["Steps", "HeartRate", "HeartRateVariabilityRmssd"]

    @pytest.mark.asyncio
    async def test_cycle_values(self, static_source, memory_stores, fast_config) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        await scheduler.sync_now()

        hr = await memory_stores["heart_rate"].find_by_date(TEST_USER_ID, TEST_DATE)
        by_label = {r.time_label: r for r in hr.records}
        assert by_label["10:20 AM"].metric_value == 72.3
        assert by_label["10:25 AM"].metric_value == 82.5
        assert by_label["10:25 AM"].sample_count == 2
        assert by_label["10:25 AM"].device_source == "health_connect"

        steps = await memory_stores["steps"].find_by_date(TEST_USER_ID, TEST_DATE)
        assert steps.aggregate == 115

    @pytest.mark.asyncio
    async def test_repeated_cycles_do_not_duplicate(
        self, static_source, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        await scheduler.sync_now()
        await scheduler.sync_now()
        assert len(memory_stores["hrv"]) == 126

    @pytest.mark.asyncio
    async def test_trigger_during_cycle_is_dropped(
        self, static_source, memory_stores, fast_config
    ) -> None:
        gate = asyncio.Event()
        submitter = RecordingSubmitter(StoreSubmitter(memory_stores), gate=gate)
        scheduler = _scheduler(static_source, submitter, fast_config)

        first = asyncio.create_task(scheduler.sync_now())
        await asyncio.sleep(0.01)
        assert scheduler.is_syncing

        second = await scheduler.sync_now()
        assert second.status == "skipped"

        gate.set()
        result = await first
        assert result.status == "success"
        assert submitter.calls == ["steps", "heart_rate", "hrv"]

    @pytest.mark.asyncio
    async def test_one_metric_failing_gives_partial(
        self, static_source, memory_stores, fast_config
    ) -> None:
        submitter = RecordingSubmitter(
            StoreSubmitter(memory_stores), fail_on={2: PersistenceError("disk full")}
        )
        scheduler = _scheduler(static_source, submitter, fast_config)

        result = await scheduler.sync_now()

        assert result.status == "partial"
        assert set(result.records_saved) == {"steps", "hrv"}
        assert any("heart_rate" in f and "disk full" in f for f in result.failures)
        assert scheduler.state is SyncState.READY

    @pytest.mark.asyncio
    async def test_missing_store_reported(self, static_source, fast_config) -> None:
        stores = {"steps": InMemoryUpsertStore(STEPS)}
        scheduler = _scheduler(static_source, StoreSubmitter(stores), fast_config)
        result = await scheduler.sync_now()
        assert result.status == "partial"
        assert result.records_saved == {"steps": 126}

    @pytest.mark.asyncio
    async def test_only_configured_metrics_synced(self, static_source, memory_stores) -> None:
        config = SyncConfig(metrics=["hrv"])
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), config)
        result = await scheduler.sync_now()
        assert list(result.records_saved) == ["hrv"]
        assert static_source.read_calls == [HRV.record_type]


# ---------------------------------------------------------------------------
# Initialization and failures
# ---------------------------------------------------------------------------


class TestInitialization:
    @pytest.mark.asyncio
    async def test_unavailable_source_fails_start(self, memory_stores, fast_config) -> None:
        source = StaticSource(available=False)
        scheduler = _scheduler(source, StoreSubmitter(memory_stores), fast_config)

        with pytest.raises(SourceUnavailableError, match="initialize"):
            await scheduler.start()
        assert scheduler.state is SyncState.FAILED
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_denied_permission_fails_start(self, memory_stores, fast_config) -> None:
        source = StaticSource(granted={"Steps"})
        scheduler = _scheduler(source, StoreSubmitter(memory_stores), fast_config)

        with pytest.raises(SourceUnavailableError, match="HeartRate"):
            await scheduler.initialize()
        assert scheduler.state is SyncState.FAILED

    @pytest.mark.asyncio
    async def test_cycle_with_failed_source_reports_error(
        self, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(
            StaticSource(available=False), StoreSubmitter(memory_stores), fast_config
        )
        result = await scheduler.sync_now()
        assert result.status == "error"
        assert "initialize" in result.error
        assert len(memory_stores["steps"]) == 0

    @pytest.mark.asyncio
    async def test_failed_state_retried_next_cycle(
        self, static_source, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        static_source._available = False
        assert (await scheduler.sync_now()).status == "error"

        static_source._available = True
        assert (await scheduler.sync_now()).status == "success"
        assert scheduler.state is SyncState.READY

    @pytest.mark.asyncio
    async def test_read_timeout_marks_source_failed(self, memory_stores, fast_config) -> None:
        scheduler = _scheduler(SlowSource(), StoreSubmitter(memory_stores), fast_config)
        result = await scheduler.sync_now()
        assert result.status == "error"
        assert "timed out" in result.error
        assert scheduler.state is SyncState.FAILED

    @pytest.mark.asyncio
    async def test_submit_timeout_is_network_error(
        self, static_source, memory_stores, fast_config
    ) -> None:
        submitter = RecordingSubmitter(StoreSubmitter(memory_stores), delay=1)
        scheduler = _scheduler(static_source, submitter, fast_config)
        result = await scheduler.sync_now()
        assert result.status == "error"
        assert "Submitting steps timed out" in result.error
        assert scheduler.state is SyncState.READY

    @pytest.mark.asyncio
    async def test_unexpected_submit_error_returns_to_ready(
        self, static_source, memory_stores, fast_config
    ) -> None:
        submitter = RecordingSubmitter(
            StoreSubmitter(memory_stores), fail_on={1: RuntimeError("boom")}
        )
        scheduler = _scheduler(static_source, submitter, fast_config)

        result = await scheduler.sync_now()
        assert result.status == "error"
        assert result.error == "RuntimeError: boom"
        assert scheduler.state is SyncState.READY
        assert not scheduler.is_syncing
        assert scheduler.seconds_since_last_success() is None

        assert (await scheduler.sync_now()).status == "success"

    @pytest.mark.asyncio
    async def test_submit_budget_covers_slow_submitter(
        self, static_source, memory_stores, fast_config
    ) -> None:
        class PatientSubmitter(RecordingSubmitter):
            def submit_budget(self, submit_timeout: float) -> float:
                return submit_timeout + 1

        # 0.3s exceeds the 0.2s submit timeout but fits the declared budget
        submitter = PatientSubmitter(StoreSubmitter(memory_stores), delay=0.3)
        scheduler = _scheduler(static_source, submitter, fast_config)
        result = await scheduler.sync_now()
        assert result.status == "success"



# ---------------------------------------------------------------------------
# Resume trigger
# ---------------------------------------------------------------------------


class TestOnResume:
    @pytest.mark.asyncio
    async def test_resume_without_previous_sync_syncs(
        self, static_source, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        result = await scheduler.on_resume()
        assert result is not None
        assert result.status == "success"

    @pytest.mark.asyncio
    async def test_resume_within_threshold_does_nothing(
        self, static_source, memory_stores, fast_config
    ) -> None:
        clock = FakeMonotonic()
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config, clock)
        await scheduler.sync_now()

        clock.now += 240
        assert await scheduler.on_resume() is None
        assert static_source.read_calls.count("Steps") == 1

    @pytest.mark.asyncio
    async def test_resume_after_threshold_syncs(
        self, static_source, memory_stores, fast_config
    ) -> None:
        clock = FakeMonotonic()
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config, clock)
        await scheduler.sync_now()

        clock.now += 241
        result = await scheduler.on_resume()
        assert result is not None and result.status == "success"
        assert scheduler.seconds_since_last_success() == 0

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_reset_staleness(
        self, static_source, memory_stores, fast_config
    ) -> None:
        clock = FakeMonotonic()
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config, clock)
        await scheduler.sync_now()
        clock.now += 300

        static_source._available = False
        scheduler._state = SyncState.FAILED
        await scheduler.sync_now()
        assert scheduler.seconds_since_last_success() == 300

    @pytest.mark.asyncio
    async def test_resume_after_stop_does_nothing(
        self, static_source, memory_stores, fast_config
    ) -> None:
        clock = FakeMonotonic()
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config, clock)
        await scheduler.start()
        await scheduler.stop()
        reads = len(static_source.read_calls)

        clock.now += 600
        assert await scheduler.on_resume() is None
        assert len(static_source.read_calls) == reads



# ---------------------------------------------------------------------------
# Periodic timer
# ---------------------------------------------------------------------------


class TestPeriodic:
    @pytest.mark.asyncio
    async def test_start_syncs_immediately_then_periodically(
        self, static_source, memory_stores, fast_config
    ) -> None:
        submitter = RecordingSubmitter(StoreSubmitter(memory_stores))
        scheduler = _scheduler(static_source, submitter, fast_config)

        first = await scheduler.start()
        assert first.status == "success"
        assert scheduler.is_running

        await asyncio.sleep(0.3)
        await scheduler.stop()

        cycles = submitter.calls.count("steps")
        assert cycles >= 3
        assert not scheduler.is_running

        await asyncio.sleep(0.15)
        assert submitter.calls.count("steps") == cycles

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, static_source, memory_stores, fast_config) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        await scheduler.start()
        try:
            with pytest.raises(RuntimeError, match="already started"):
                await scheduler.start()
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(
        self, static_source, memory_stores, fast_config
    ) -> None:
        # call 4 is the first periodic cycle's steps submit
        submitter = RecordingSubmitter(
            StoreSubmitter(memory_stores), fail_on={4: RuntimeError("boom")}
        )
        scheduler = _scheduler(static_source, submitter, fast_config)

        await scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop()

        assert submitter.calls.count("steps") >= 3
        assert not scheduler.is_syncing

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_cycle(
        self, static_source, memory_stores, fast_config
    ) -> None:
        submitter = RecordingSubmitter(StoreSubmitter(memory_stores))
        scheduler = _scheduler(static_source, submitter, fast_config)
        await scheduler.start()

        gate = asyncio.Event()
        submitter.gate = gate
        while not scheduler.is_syncing:
            await asyncio.sleep(0.01)

        stopper = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.05)
        assert not stopper.done()

        gate.set()
        await stopper
        assert not scheduler.is_syncing
        assert len(memory_stores["steps"]) == 126

    @pytest.mark.asyncio
    async def test_manual_sync_after_stop_skipped(
        self, static_source, memory_stores, fast_config
    ) -> None:
        scheduler = _scheduler(static_source, StoreSubmitter(memory_stores), fast_config)
        await scheduler.start()
        await scheduler.stop()
        reads = len(static_source.read_calls)

        assert (await scheduler.sync_now()).status == "skipped"
        assert len(static_source.read_calls) == reads

        assert (await scheduler.start()).status == "success"
        await scheduler.stop()
