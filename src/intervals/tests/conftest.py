"""Shared fixtures and raw Health Connect records for interval sync tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from src.intervals.base import INTERVAL_WIDTH, IntervalFields, IntervalKey, IntervalWrite
from src.intervals.config_loader import SyncConfig, load_sync_config
from src.intervals.metrics import HEART_RATE, HRV, STEPS
from src.intervals.store import InMemoryUpsertStore
from src.intervals.sources.static import StaticSource

# Canonical test user and day
TEST_USER_ID = "test_user"
TEST_DATE = date(2026, 2, 23)

# 10:27 local (UTC) on the test day; last interval starts at 10:25
TEST_NOW = datetime(2026, 2, 23, 10, 27, 30, tzinfo=timezone.utc)


def make_write(
    start: datetime,
    value: float = 72.0,
    sample_count: int = 3,
    user_id: str = TEST_USER_ID,
    width: timedelta = INTERVAL_WIDTH,
) -> IntervalWrite:
    """Build one keyed write for the interval starting at ``start``."""
    return IntervalWrite(
        key=IntervalKey(user_id=user_id, date=start.date(), interval_start=start),
        fields=IntervalFields(
            interval_end=start + width,
            time_label=f"{start.hour % 12 or 12}:{start.minute:02d} {'AM' if start.hour < 12 else 'PM'}",
            metric_value=value,
            sample_count=sample_count,
        ),
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def fast_config() -> SyncConfig:
    """Config with sub-second cadence and timeouts for scheduler tests."""
    return SyncConfig(
        period_seconds=0.05,
        resume_threshold_seconds=240,
        source_timeout_seconds=0.2,
        submit_timeout_seconds=0.2,
        health_timeout_seconds=0.2,
    )


# ---------------------------------------------------------------------------
# Raw record fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def heart_rate_records() -> list[dict]:
    """Two HeartRate records: three samples in 10:20, two in 10:25."""
    return [
        {
            "startTime": "2026-02-23T10:20:00Z",
            "endTime": "2026-02-23T10:25:00Z",
            "samples": [
                {"time": "2026-02-23T10:20:10Z", "beatsPerMinute": 70},
                {"time": "2026-02-23T10:22:00Z", "beatsPerMinute": 72},
                {"time": "2026-02-23T10:24:59Z", "beatsPerMinute": 75},
            ],
        },
        {
            "startTime": "2026-02-23T10:25:00Z",
            "endTime": "2026-02-23T10:30:00Z",
            "samples": [
                {"time": "2026-02-23T10:25:00Z", "beatsPerMinute": 80},
                {"time": "2026-02-23T10:26:30Z", "beatsPerMinute": 85},
            ],
        },
    ]


@pytest.fixture
def step_records() -> list[dict]:
    return [
        {"startTime": "2026-02-23T10:21:00Z", "endTime": "2026-02-23T10:22:00Z", "count": 40},
        {"startTime": "2026-02-23T10:23:00Z", "endTime": "2026-02-23T10:24:00Z", "count": 60},
        {"startTime": "2026-02-23T10:26:00Z", "endTime": "2026-02-23T10:27:00Z", "count": 15},
    ]


@pytest.fixture
def hrv_records() -> list[dict]:
    return [
        {"time": "2026-02-23T10:05:00Z", "heartRateVariabilityMillis": 42.0},
        {"time": "2026-02-23T10:07:00Z", "heartRateVariabilityMillis": 47.0},
    ]


@pytest.fixture
def static_source(
    heart_rate_records: list[dict], step_records: list[dict], hrv_records: list[dict]
) -> StaticSource:
    return StaticSource(
        {
            HEART_RATE.record_type: heart_rate_records,
            STEPS.record_type: step_records,
            HRV.record_type: hrv_records,
        }
    )


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def heart_rate_store() -> InMemoryUpsertStore:
    return InMemoryUpsertStore(HEART_RATE)


@pytest.fixture
def memory_stores() -> dict[str, InMemoryUpsertStore]:
    return {m.name: InMemoryUpsertStore(m) for m in (STEPS, HEART_RATE, HRV)}
