"""Error taxonomy for interval aggregation and sync.

    ValidationError        — malformed or missing input; rejected before any work
    SourceUnavailableError — data source not initialized, permission denied, read failed
    PersistenceError       — a single record could not be written
    NetworkError           — transport to the persistence boundary failed
"""

from __future__ import annotations


class IntervalSyncError(Exception):
    """Base class for all interval sync errors."""


class ValidationError(IntervalSyncError):
    """Raised when submitted intervals or query parameters are malformed."""


class SourceUnavailableError(IntervalSyncError):
    """Raised when the data source cannot be initialized, authorized or read."""


class PersistenceError(IntervalSyncError):
    """Raised when the store rejects or cannot complete a write.

    Attributes:
        key: Dedup key of the record that failed, when known.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class NetworkError(IntervalSyncError):
    """Raised when no persistence endpoint is reachable or a submit times out."""
