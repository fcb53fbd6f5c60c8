"""In-memory data source for fixtures, demos and tests."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from src.intervals.base import parse_iso_datetime
from src.intervals.sources.base import DataSource, PermissionStatus

_TIME_KEYS = ("time", "startTime")


def _record_time(record: dict) -> datetime | None:
    for key in _TIME_KEYS:
        if key in record:
            return parse_iso_datetime(record[key])
    samples = record.get("samples")
    if isinstance(samples, list) and samples and isinstance(samples[0], dict):
        return parse_iso_datetime(samples[0].get("time"))
    return None


class StaticSource(DataSource):
    """Serves a fixed set of raw records per record type.

    Records are filtered by the requested time window using the record's
    ``time``/``startTime`` (or its first sample's time for HeartRate).
    Records without a parseable time are always returned.
    """

    SOURCE_ID = "static"

    def __init__(
        self,
        records: dict[str, list[dict]] | None = None,
        *,
        available: bool = True,
        granted: set[str] | None = None,
    ) -> None:
        """
        Args:
            records:   record_type → raw records.
            available: What initialize() reports.
            granted:   Record types to grant; None grants everything.
        """
        self.records = records or {}
        self._available = available
        self._granted = granted
        self.read_calls: list[str] = []

    async def initialize(self) -> bool:
        return self._available

    async def request_permission(self, record_types: Sequence[str]) -> list[PermissionStatus]:
        return [
            PermissionStatus(
                record_type=t,
                granted=self._granted is None or t in self._granted,
            )
            for t in record_types
        ]

    async def read_records(
        self, record_type: str, start_time: datetime, end_time: datetime
    ) -> list[dict]:
        self.read_calls.append(record_type)
        selected = []
        for record in self.records.get(record_type, []):
            ts = _record_time(record)
            if ts is None or start_time <= ts <= end_time:
                selected.append(record)
        return selected
