"""IntervalSync five-minute interval engine.

This package turns raw heart rate, HRV and step readings into fixed
five-minute buckets and keeps exactly one stored record per bucket.

Subpackages:
    sources/ — Raw record sources (Health Connect bridge, static fixtures)
    sync/    — Periodic sync scheduler, submitters, dedup keys and upsert SQL

Core modules:
    base          — Sample, Interval and IntervalRecord models
    generator     — Today's five-minute intervals up to now
    aggregator    — Mean/sum reduction of samples into intervals
    metrics       — Per-metric definitions and wire field names
    store         — Idempotent upsert stores (PostgreSQL, in-memory)
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.intervals.base import (
    Interval,
    IntervalCandidate,
    IntervalFields,
    IntervalKey,
    IntervalRecord,
    IntervalWrite,
    Reducer,
    Sample,
)
from src.intervals.config_loader import SyncConfig, get_sync_config
from src.intervals.metrics import METRIC_REGISTRY, MetricDefinition, get_metric

__all__ = [
    "Sample",
    "Interval",
    "IntervalCandidate",
    "IntervalKey",
    "IntervalFields",
    "IntervalWrite",
    "IntervalRecord",
    "Reducer",
    "MetricDefinition",
    "METRIC_REGISTRY",
    "get_metric",
    "SyncConfig",
    "get_sync_config",
]
