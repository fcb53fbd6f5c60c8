"""Flatten raw Health Connect records into Samples.

Each record type nests its readings differently:

    HeartRate                   {"samples": [{"time": ..., "beatsPerMinute": ...}]}
    Steps                       {"startTime": ..., "endTime": ..., "count": ...}
    HeartRateVariabilityRmssd   {"time": ..., "heartRateVariabilityMillis": ...}

These are pure functions: no I/O, and malformed entries are skipped rather
than raised so one bad record cannot sink a whole sync cycle.
"""

from __future__ import annotations

import logging

from src.intervals.base import Sample, parse_iso_datetime

logger = logging.getLogger("intervalsync.intervals.sources.records")


def _safe_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def heart_rate_samples(record: dict) -> list[Sample]:
    """One Sample per beat-rate entry in a HeartRate record."""
    entries = record.get("samples")
    if not isinstance(entries, list):
        return []
    samples: list[Sample] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        ts = parse_iso_datetime(entry.get("time"))
        if ts is None:
            continue
        samples.append(Sample(timestamp=ts, value=_safe_float(entry.get("beatsPerMinute"))))
    return samples


def step_samples(record: dict) -> list[Sample]:
    """A Steps record becomes one Sample stamped at its start time."""
    ts = parse_iso_datetime(record.get("startTime"))
    if ts is None:
        return []
    return [Sample(timestamp=ts, value=_safe_float(record.get("count")))]


def hrv_samples(record: dict) -> list[Sample]:
    """An HRV RMSSD record becomes one Sample."""
    ts = parse_iso_datetime(record.get("time"))
    if ts is None:
        return []
    return [Sample(timestamp=ts, value=_safe_float(record.get("heartRateVariabilityMillis")))]
