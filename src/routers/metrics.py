"""Interval endpoints, one router per metric.

Every metric exposes the same three routes under ``/api/{slug}``:

    POST /                store a batch of intervals (one upsert each)
    GET  /today           today's intervals plus the date aggregate
    GET  /{date}          the same for a YYYY-MM-DD date

Only the field names differ between metrics; see src.intervals.metrics.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.dependencies import AppSettings, QueryUserId, Stores, resolve_user_id
from src.intervals.errors import PersistenceError, ValidationError
from src.intervals.metrics import METRIC_REGISTRY, MetricDefinition
from src.intervals.store import DaySummary
from src.models.base import ErrorResponse
from src.models.intervals import interval_item_model

logger = logging.getLogger("intervalsync.routers.metrics")


def _day_response(summary: DaySummary) -> dict[str, Any]:
    metric = summary.metric
    return {
        "success": True,
        "date": summary.date.isoformat(),
        "data": [r.to_wire(metric) for r in summary.records],
        metric.aggregate_field: summary.aggregate,
    }


def _failure_response(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": message, "error": str(exc)},
    )


def build_metric_router(metric: MetricDefinition) -> APIRouter:
    """Create the POST/GET routes for one metric."""
    router = APIRouter(
        prefix=f"/{metric.slug}",
        tags=[metric.name],
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    items_adapter = TypeAdapter(list[interval_item_model(metric)])
    required_message = f"{metric.intervals_field} array is required"

    @router.post("")
    async def store_intervals(request: Request, settings: AppSettings, stores: Stores) -> Any:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError(required_message) from exc
        if not isinstance(body, dict) or not isinstance(body.get(metric.intervals_field), list):
            raise ValidationError(required_message)

        raw_user_id = body.get("userId")
        if raw_user_id is not None and not isinstance(raw_user_id, str):
            raise ValidationError("userId must be a string")
        user_id = resolve_user_id(raw_user_id, settings)

        try:
            items = items_adapter.validate_python(body[metric.intervals_field])
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(p) for p in first["loc"])
            raise ValidationError(
                f"Invalid {metric.intervals_field}: {location}: {first['msg']}"
            ) from exc

        writes = [item.to_write(user_id, settings.tzinfo) for item in items]
        result = await stores[metric.name].upsert_many(writes)

        if result.all_failed:
            logger.error(
                "Error storing %s data for %s: %d records failed",
                metric.display_name, user_id, len(result.failures),
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "message": f"Failed to store {metric.display_name} data",
                    "error": result.failures[0].error,
                },
            )

        content: dict[str, Any] = {
            "success": True,
            "message": f"Stored {len(result.records)} {metric.display_name} intervals",
            "data": [r.to_wire(metric) for r in result.records],
        }
        if result.failures:
            content["failed"] = [
                {
                    "index": f.index,
                    "intervalStart": f.interval_start.isoformat(),
                    "error": f.error,
                }
                for f in result.failures
            ]
        return content

    @router.get("/today")
    async def get_today_intervals(user_id: QueryUserId, stores: Stores) -> Any:
        try:
            summary = await stores[metric.name].find_today(user_id)
        except PersistenceError as exc:
            logger.error("Error fetching today's %s data: %s", metric.display_name, exc)
            return _failure_response(f"Failed to fetch today's {metric.display_name} data", exc)
        return _day_response(summary)

    @router.get("/{day}")
    async def get_intervals_for_date(day: str, user_id: QueryUserId, stores: Stores) -> Any:
        try:
            target = date.fromisoformat(day)
        except ValueError as exc:
            raise ValidationError(f"Invalid date '{day}', expected YYYY-MM-DD") from exc
        try:
            summary = await stores[metric.name].find_by_date(user_id, target)
        except PersistenceError as exc:
            logger.error("Error fetching %s data for %s: %s", metric.display_name, target, exc)
            return _failure_response(f"Failed to fetch {metric.display_name} data", exc)
        return _day_response(summary)

    return router


routers: list[APIRouter] = [build_metric_router(m) for m in METRIC_REGISTRY.values()]
