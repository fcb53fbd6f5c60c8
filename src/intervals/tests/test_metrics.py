"""Tests for the metric registry and date-level summaries."""

from __future__ import annotations

import pytest

from src.intervals.base import Reducer
from src.intervals.metrics import HEART_RATE, HRV, METRIC_REGISTRY, STEPS, get_metric


class TestRegistry:
    def test_three_metrics_registered(self) -> None:
        assert set(METRIC_REGISTRY) == {"steps", "heart_rate", "hrv"}

    def test_get_metric(self) -> None:
        assert get_metric("hrv") is HRV

    def test_get_unknown_metric_raises(self) -> None:
        with pytest.raises(KeyError, match="blood_oxygen"):
            get_metric("blood_oxygen")

    @pytest.mark.parametrize(
        "metric, slug, value_field, aggregate_field, intervals_field",
        [
            (STEPS, "steps", "stepCount", "totalSteps", "stepIntervals"),
            (HEART_RATE, "heartrate", "heartRateValue", "avgHeartRate", "heartRateIntervals"),
            (HRV, "hrv", "hrvValue", "avgHrv", "hrvIntervals"),
        ],
    )
    def test_wire_field_names(
        self, metric, slug, value_field, aggregate_field, intervals_field
    ) -> None:
        assert metric.slug == slug
        assert metric.value_field == value_field
        assert metric.aggregate_field == aggregate_field
        assert metric.intervals_field == intervals_field

    def test_reducers(self) -> None:
        assert STEPS.reducer is Reducer.SUM
        assert HEART_RATE.reducer is Reducer.MEAN
        assert HRV.reducer is Reducer.MEAN


class TestSummarize:
    def test_steps_total(self) -> None:
        assert STEPS.summarize([100, 0, 15]) == 115

    def test_rate_is_mean_of_interval_means(self) -> None:
        # interval means, not a per-sample grand mean
        assert HEART_RATE.summarize([72.3, 82.5]) == pytest.approx(77.4)

    def test_empty_interval_counts_towards_mean(self) -> None:
        assert HRV.summarize([44.5, 0]) == pytest.approx(22.25)

    @pytest.mark.parametrize("metric", [STEPS, HEART_RATE, HRV])
    def test_empty_day_is_zero(self, metric) -> None:
        assert metric.summarize([]) == 0
