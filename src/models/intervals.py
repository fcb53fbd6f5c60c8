"""Pydantic models for interval submissions.

The per-interval value key differs by metric (``stepCount``,
``heartRateValue``, ``hrvValue``), so each metric gets its own item model
built from the shared base.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo

from pydantic import Field, create_model, field_validator

from src.intervals.base import (
    DEFAULT_DEVICE_SOURCE,
    IntervalFields,
    IntervalKey,
    IntervalWrite,
)
from src.intervals.metrics import MetricDefinition
from src.models.base import IntervalSyncBase


class IntervalInBase(IntervalSyncBase):
    interval_start: datetime
    interval_end: datetime
    time_label: str = Field(min_length=1)
    sample_count: int = Field(default=0, ge=0)
    device_source: str | None = None
    metric_value: float | None = None

    @field_validator("interval_start", "interval_end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_write(self, user_id: str, tz: tzinfo) -> IntervalWrite:
        """Key the interval by the local date of its start in ``tz``."""
        start = self.interval_start.astimezone(tz)
        return IntervalWrite(
            key=IntervalKey(user_id=user_id, date=start.date(), interval_start=start),
            fields=IntervalFields(
                interval_end=self.interval_end.astimezone(tz),
                time_label=self.time_label,
                metric_value=self.metric_value or 0,
                sample_count=self.sample_count,
                device_source=self.device_source or DEFAULT_DEVICE_SOURCE,
            ),
        )


_ITEM_MODELS: dict[str, type[IntervalInBase]] = {}


def interval_item_model(metric: MetricDefinition) -> type[IntervalInBase]:
    """Return the item model whose value field is ``metric.value_field``."""
    model = _ITEM_MODELS.get(metric.name)
    if model is None:
        model = create_model(
            f"{metric.name.title().replace('_', '')}IntervalIn",
            __base__=IntervalInBase,
            metric_value=(float | None, Field(default=None, alias=metric.value_field)),
        )
        _ITEM_MODELS[metric.name] = model
    return model
