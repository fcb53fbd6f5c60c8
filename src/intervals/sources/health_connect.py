"""Health Connect bridge data source.

Health Connect has no network API of its own; a small companion app on the
device exposes it over local HTTP.  This adapter speaks that bridge:

    GET  /initialize                  -> {"initialized": bool}
    POST /permissions                 -> [{"recordType", "accessType", "status"}]
    POST /records/{recordType}        -> {"records": [...]}

The records endpoint takes the same ``timeRangeFilter`` body Health
Connect's ``readRecords`` does.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

import httpx

from src.intervals.errors import SourceUnavailableError
from src.intervals.sources.base import DataSource, PermissionStatus

logger = logging.getLogger("intervalsync.intervals.sources.health_connect")


class HealthConnectBridgeSource(DataSource):
    """Reads raw Health Connect records through the on-device HTTP bridge."""

    SOURCE_ID = "health_connect"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the bridge source.

        Args:
            base_url:    Bridge root, e.g. ``http://127.0.0.1:8765``.
            timeout:     Per-request timeout in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def initialize(self) -> bool:
        try:
            response = await self._client.get(f"{self._base_url}/initialize")
            response.raise_for_status()
            initialized = bool(response.json().get("initialized", False))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to initialize Health Connect bridge at %s: %s", self._base_url, exc)
            return False
        logger.info("Health Connect initialized: %s", initialized)
        return initialized

    async def request_permission(self, record_types: Sequence[str]) -> list[PermissionStatus]:
        body = {
            "permissions": [
                {"accessType": "read", "recordType": record_type}
                for record_type in record_types
            ]
        }
        try:
            response = await self._client.post(f"{self._base_url}/permissions", json=body)
            response.raise_for_status()
            granted = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(f"Permission request failed: {exc}") from exc

        by_type = {
            entry.get("recordType"): entry.get("status") == "granted"
            for entry in granted
            if isinstance(entry, dict)
        }
        statuses = [
            PermissionStatus(record_type=t, granted=by_type.get(t, False))
            for t in record_types
        ]
        logger.info(
            "Permissions result: %s",
            {s.record_type: s.granted for s in statuses},
        )
        return statuses

    async def read_records(
        self, record_type: str, start_time: datetime, end_time: datetime
    ) -> list[dict]:
        body = {
            "timeRangeFilter": {
                "operator": "between",
                "startTime": start_time.isoformat(),
                "endTime": end_time.isoformat(),
            }
        }
        try:
            response = await self._client.post(
                f"{self._base_url}/records/{record_type}", json=body
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(f"Reading {record_type} records failed: {exc}") from exc

        records = payload.get("records", []) if isinstance(payload, dict) else []
        logger.debug("Found %d %s records", len(records), record_type)
        return records

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
