"""Metric registry: one generic definition per tracked signal.

The three metrics share every code path (aggregation, upsert, query, HTTP
routing).  What differs between them lives here: the reducer, the data
source record type, and the wire field names existing clients depend on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from src.intervals.base import Reducer, Sample
from src.intervals.sources.records import heart_rate_samples, hrv_samples, step_samples


@dataclass(frozen=True)
class MetricDefinition:
    """Everything that distinguishes one metric from another.

    Attributes:
        name:            Internal name, stored in the ``metric`` column.
        slug:            URL segment under ``/api``.
        display_name:    Used in log lines and response messages.
        value_field:     Per-interval value key on the wire.
        aggregate_field: Date-level summary key on the wire.
        intervals_field: Request body key holding the interval array.
        reducer:         MEAN for rates, SUM for counters.
        record_type:     Data source record type to read.
        extractor:       Flattens one raw record into Samples.
    """

    name: str
    slug: str
    display_name: str
    value_field: str
    aggregate_field: str
    intervals_field: str
    reducer: Reducer
    record_type: str
    extractor: Callable[[dict], list[Sample]]

    def summarize(self, values: Sequence[float]) -> float:
        """Date-level aggregate over per-interval values.

        Rate metrics get the mean of the bucket means (not a per-sample
        grand mean).  Counter metrics get the sum.  Empty input gives 0.
        """
        if not values:
            return 0
        total = sum(values)
        if self.reducer is Reducer.SUM:
            return total
        return total / len(values)


STEPS = MetricDefinition(
    name="steps",
    slug="steps",
    display_name="step",
    value_field="stepCount",
    aggregate_field="totalSteps",
    intervals_field="stepIntervals",
    reducer=Reducer.SUM,
    record_type="Steps",
    extractor=step_samples,
)

HEART_RATE = MetricDefinition(
    name="heart_rate",
    slug="heartrate",
    display_name="Heart Rate",
    value_field="heartRateValue",
    aggregate_field="avgHeartRate",
    intervals_field="heartRateIntervals",
    reducer=Reducer.MEAN,
    record_type="HeartRate",
    extractor=heart_rate_samples,
)

HRV = MetricDefinition(
    name="hrv",
    slug="hrv",
    display_name="HRV",
    value_field="hrvValue",
    aggregate_field="avgHrv",
    intervals_field="hrvIntervals",
    reducer=Reducer.MEAN,
    record_type="HeartRateVariabilityRmssd",
    extractor=hrv_samples,
)

# Registry: metric name → definition
METRIC_REGISTRY: dict[str, MetricDefinition] = {
    m.name: m for m in (STEPS, HEART_RATE, HRV)
}


def get_metric(name: str) -> MetricDefinition:
    """Return the definition for a metric name.

    Raises:
        KeyError: If the metric is not registered.
    """
    if name not in METRIC_REGISTRY:
        raise KeyError(
            f"No metric registered as '{name}'. Available: {list(METRIC_REGISTRY)}"
        )
    return METRIC_REGISTRY[name]
