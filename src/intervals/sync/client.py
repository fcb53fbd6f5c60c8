"""Submit aggregated intervals to the upsert store.

Two submitters share one interface:

    StoreSubmitter     writes straight into in-process UpsertStores
    IntervalApiClient  POSTs to ``/api/{metric}`` on the first healthy endpoint

The API client does not remember a "current" endpoint between cycles.
Each submit re-resolves the endpoint by checking ``/health`` on every
configured base URL in order, and gets back an explicit
EndpointResolution.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import httpx

from src.intervals.base import IntervalCandidate
from src.intervals.errors import NetworkError, PersistenceError, ValidationError
from src.intervals.metrics import MetricDefinition
from src.intervals.store import UpsertStore, candidates_to_writes

logger = logging.getLogger("intervalsync.sync.client")


@dataclass
class SubmitOutcome:
    """Result of submitting one metric's batch.

    Attributes:
        saved:    Records persisted.
        failures: One message per record that failed.
    """

    saved: int = 0
    failures: list[str] = field(default_factory=list)


class Submitter(ABC):
    """Sends a metric's candidates to wherever records are persisted."""

    @abstractmethod
    async def submit(
        self,
        metric: MetricDefinition,
        user_id: str,
        candidates: Sequence[IntervalCandidate],
        device_source: str,
    ) -> SubmitOutcome:
        """Persist every candidate, reporting per-record failures.

        Raises:
            NetworkError:     The persistence boundary could not be reached.
            PersistenceError: The whole batch was rejected.
        """

    def submit_budget(self, submit_timeout: float) -> float:
        """Seconds a caller should allow one submit() to take."""
        return submit_timeout

    async def close(self) -> None:
        return None


class StoreSubmitter(Submitter):
    """Writes directly into in-process stores (one per metric name)."""

    def __init__(self, stores: Mapping[str, UpsertStore]) -> None:
        self._stores = stores

    async def submit(
        self,
        metric: MetricDefinition,
        user_id: str,
        candidates: Sequence[IntervalCandidate],
        device_source: str,
    ) -> SubmitOutcome:
        store = self._stores.get(metric.name)
        if store is None:
            raise PersistenceError(f"No store configured for metric '{metric.name}'")
        result = await store.upsert_many(candidates_to_writes(user_id, candidates, device_source))
        if result.all_failed:
            raise PersistenceError(
                f"All {len(result.failures)} {metric.name} records failed: {result.failures[0].error}"
            )
        return SubmitOutcome(
            saved=len(result.records),
            failures=[f"{f.interval_start.isoformat()}: {f.error}" for f in result.failures],
        )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@dataclass
class EndpointResolution:
    """Outcome of checking the configured API endpoints.

    Attributes:
        base_url: First endpoint whose ``/health`` answered OK, or None.
        attempts: (base_url, outcome) for every endpoint tried, in order.
    """

    base_url: str | None = None
    attempts: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.base_url is not None


class IntervalApiClient(Submitter):
    """Submits interval batches to the HTTP surface.

    Usage::

        client = IntervalApiClient(["http://localhost:3000/api", "http://10.0.2.2:3000/api"])
        outcome = await client.submit(HEART_RATE, "default_user", candidates, "health_connect")
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        *,
        submit_timeout: float = 10.0,
        health_timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            endpoints:      Base URLs (ending in ``/api``) in preference order.
            submit_timeout: Timeout for each batch POST, in seconds.
            health_timeout: Timeout for each ``/health`` check, in seconds.
            http_client:    Optional pre-configured httpx client (for testing).
        """
        if not endpoints:
            raise ValueError("At least one API endpoint is required")
        self._endpoints = [e.rstrip("/") for e in endpoints]
        self._submit_timeout = submit_timeout
        self._health_timeout = health_timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    async def resolve_endpoint(self) -> EndpointResolution:
        """Probe each endpoint's ``/health`` in order; stop at the first OK."""
        resolution = EndpointResolution()
        for base_url in self._endpoints:
            try:
                response = await self._client.get(
                    f"{base_url}/health", timeout=self._health_timeout
                )
            except httpx.HTTPError as exc:
                logger.debug("Endpoint %s unreachable: %s", base_url, exc)
                resolution.attempts.append((base_url, f"error: {exc}"))
                continue
            if response.is_success:
                resolution.attempts.append((base_url, "ok"))
                resolution.base_url = base_url
                logger.info("API connection successful: %s", base_url)
                return resolution
            logger.debug("Endpoint %s answered %d", base_url, response.status_code)
            resolution.attempts.append((base_url, f"status {response.status_code}"))

        logger.warning("All %d API endpoints failed", len(self._endpoints))
        return resolution

    def submit_budget(self, submit_timeout: float) -> float:
        # every /health check may time out before the POST starts
        return self._health_timeout * len(self._endpoints) + submit_timeout

    async def submit(
        self,
        metric: MetricDefinition,
        user_id: str,
        candidates: Sequence[IntervalCandidate],
        device_source: str,
    ) -> SubmitOutcome:
        resolution = await self.resolve_endpoint()
        if not resolution.ok:
            raise NetworkError(
                "No API endpoint reachable: "
                + "; ".join(f"{url} ({outcome})" for url, outcome in resolution.attempts)
            )

        intervals = []
        for candidate in candidates:
            payload = candidate.to_payload(metric)
            payload["deviceSource"] = device_source
            intervals.append(payload)
        body = {metric.intervals_field: intervals, "userId": user_id}

        url = f"{resolution.base_url}/{metric.slug}"
        logger.info("Sending %d %s intervals to %s", len(intervals), metric.name, url)
        try:
            response = await self._client.post(url, json=body, timeout=self._submit_timeout)
        except httpx.HTTPError as exc:
            raise NetworkError(f"POST {url} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code == 400:
            raise ValidationError(data.get("message") or "Request rejected as invalid")
        if response.status_code >= 500 or not data.get("success", False):
            raise PersistenceError(
                data.get("error") or data.get("message") or f"HTTP {response.status_code}"
            )

        failures = [
            f"{f.get('intervalStart')}: {f.get('error')}" for f in data.get("failed", [])
        ]
        logger.info("Stored %s intervals: %s", metric.name, data.get("message"))
        return SubmitOutcome(saved=len(data.get("data", [])), failures=failures)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
