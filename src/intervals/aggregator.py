"""Fold raw samples into five-minute interval values.

For every interval, samples with ``start <= timestamp < end`` are selected
and reduced:

    MEAN  arithmetic mean rounded half-up to one decimal; 0 when empty.
          A sample with no value adds 0 to the numerator but still counts
          in the denominator.
    SUM   plain sum, missing values count as 0; 0 when empty.

Results are returned most recent interval first.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from src.intervals.base import Interval, IntervalCandidate, Reducer, Sample
from src.intervals.metrics import MetricDefinition

logger = logging.getLogger("intervalsync.intervals.aggregator")

_ONE_DECIMAL = Decimal("0.1")


def _round_one_decimal(value: float) -> float:
    return float(Decimal(repr(value)).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def reduce_values(values: Sequence[float | None], reducer: Reducer) -> float:
    """Collapse one bucket's sample values with the given reducer."""
    if not values:
        return 0
    total = sum(v or 0 for v in values)
    if reducer is Reducer.SUM:
        return total
    return _round_one_decimal(total / len(values))


def aggregate(
    samples: Iterable[Sample],
    intervals: Sequence[Interval],
    reducer: Reducer,
) -> list[IntervalCandidate]:
    """Reduce samples into one candidate per interval.

    Args:
        samples:   Raw observations in any order.
        intervals: Buckets in ascending order (as from generate_intervals).
        reducer:   MEAN or SUM.

    Returns:
        One IntervalCandidate per interval, latest interval first.
    """
    ordered = sorted(samples, key=lambda s: s.timestamp)
    timestamps = [s.timestamp for s in ordered]

    candidates: list[IntervalCandidate] = []
    for interval in intervals:
        lo = bisect_left(timestamps, interval.start)
        hi = bisect_left(timestamps, interval.end)
        values = [s.value for s in ordered[lo:hi]]
        candidates.append(
            IntervalCandidate(
                interval=interval,
                metric_value=reduce_values(values, reducer),
                sample_count=len(values),
            )
        )

    candidates.reverse()
    logger.debug(
        "Aggregated %d samples into %d intervals (%s)",
        len(ordered),
        len(candidates),
        reducer.value,
    )
    return candidates


def extract_samples(metric: MetricDefinition, records: Iterable[dict]) -> list[Sample]:
    """Flatten raw data-source records for ``metric`` into Samples."""
    samples: list[Sample] = []
    skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        samples.extend(metric.extractor(record))
    if skipped:
        logger.warning("Skipped %d malformed %s records", skipped, metric.record_type)
    return samples
