"""Raw record sources for interval sync.

Each source implements the DataSource ABC:
- initialize() and request_permission() gate access
- read_records() returns raw record dicts for one type and time window

Available sources:
    HealthConnectBridgeSource — Android Health Connect via an on-device HTTP bridge
    StaticSource              — fixed in-memory records (fixtures, demos, tests)
"""

from src.intervals.sources.base import DataSource, PermissionStatus
from src.intervals.sources.health_connect import HealthConnectBridgeSource
from src.intervals.sources.static import StaticSource

__all__ = [
    "DataSource",
    "PermissionStatus",
    "HealthConnectBridgeSource",
    "StaticSource",
]
