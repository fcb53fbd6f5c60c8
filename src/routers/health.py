"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppSettings
from src.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("intervalsync.health")


@router.get("/health")
async def health_check(settings: AppSettings) -> dict:
    """Liveness check. Returns 200 with status "OK" while the process is up.

    Also reports database connectivity when a database is configured.
    """
    database = "in-memory"
    if settings.database_url:
        database = "unreachable"
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            database = "connected"
        except Exception as exc:
            logger.warning("Health check DB ping failed: %s", exc)

    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "database": database,
    }
