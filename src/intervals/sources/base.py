"""Abstract data source for raw health records.

The sync scheduler only ever talks to a DataSource.  Implementations wrap
whatever actually holds the readings (a Health Connect bridge, a fixture
file, an in-memory list) behind three calls that mirror the device API:

    initialize()                       -> bool
    request_permission(record_types)   -> per-type grant status
    read_records(type, start, end)     -> raw record dicts
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence


@dataclass(frozen=True)
class PermissionStatus:
    """Grant result for one record type.

    Attributes:
        record_type: e.g. 'HeartRate', 'Steps'.
        access_type: Always 'read' for this service.
        granted:     True if the source allows reading this type.
    """

    record_type: str
    access_type: str = "read"
    granted: bool = False


class DataSource(ABC):
    """Abstract base class for all raw-record sources."""

    #: Unique slug recorded as deviceSource on persisted records.
    SOURCE_ID: str = "unknown"

    @abstractmethod
    async def initialize(self) -> bool:
        """Acquire the source handle.  Returns False if the source is unusable."""

    @abstractmethod
    async def request_permission(self, record_types: Sequence[str]) -> list[PermissionStatus]:
        """Request read access for each record type.

        Args:
            record_types: Record types the caller intends to read.

        Returns:
            One PermissionStatus per requested type.
        """

    @abstractmethod
    async def read_records(
        self, record_type: str, start_time: datetime, end_time: datetime
    ) -> list[dict]:
        """Read raw records of one type whose time falls in ``[start_time, end_time]``.

        Raises:
            SourceUnavailableError: If the source cannot be read.
        """

    async def close(self) -> None:
        """Release any held resources.  Default is a no-op."""
        return None
