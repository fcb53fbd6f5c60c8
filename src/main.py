"""IntervalSync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 3000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import Settings, get_settings
from src.intervals.config_loader import get_sync_config
from src.intervals.errors import IntervalSyncError, SourceUnavailableError, ValidationError
from src.intervals.metrics import METRIC_REGISTRY
from src.intervals.sources.health_connect import HealthConnectBridgeSource
from src.intervals.store import build_stores
from src.intervals.sync.client import StoreSubmitter
from src.intervals.sync.scheduler import SyncScheduler
from src.middleware.request_log import RequestLogMiddleware
from src.routers import health, metrics
from src.services.database import close_pool, ensure_schema, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("intervalsync")


# ---------- Lifespan ----------

async def _start_sync(app: FastAPI, settings: Settings) -> None:
    """Start the in-process sync scheduler when a source bridge is configured."""
    if not (settings.sync_enabled and settings.sync_source_url):
        return
    config = get_sync_config()
    source = HealthConnectBridgeSource(
        settings.sync_source_url, timeout=config.source_timeout_seconds
    )
    scheduler = SyncScheduler(
        source=source,
        submitter=StoreSubmitter(app.state.stores),
        user_id=settings.sync_user_id,
        config=config,
        tz=settings.tzinfo,
    )
    try:
        await scheduler.start()
    except SourceUnavailableError as exc:
        # surfaced to the operator; the API keeps serving without auto-sync
        logger.error("Auto-sync not started: %s", exc)
        await source.close()
        return
    app.state.scheduler = scheduler
    app.state.sync_source = source


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting IntervalSync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    use_database = bool(settings.database_url)
    if use_database:
        pool = await init_pool(settings)
        await ensure_schema(pool)
    else:
        logger.warning("DATABASE_URL not set — using in-memory interval store")

    app.state.stores = build_stores(
        list(METRIC_REGISTRY.values()), use_database=use_database, tz=settings.tzinfo
    )
    app.state.scheduler = None
    await _start_sync(app, settings)

    yield

    if app.state.scheduler is not None:
        await app.state.scheduler.stop()
        await app.state.sync_source.close()
    if use_database:
        await close_pool()
    logger.info("IntervalSync API shut down")


# ---------- Error handlers ----------

async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})


async def _sync_error_handler(request: Request, exc: IntervalSyncError) -> JSONResponse:
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Request failed", "error": str(exc)},
    )


# ---------- App factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    app = FastAPI(
        title="IntervalSync API",
        description=(
            "Five-minute interval storage for heart rate, HRV and step data — "
            "idempotent per user, date and interval start."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ---------- Middleware (last added runs outermost) ----------

    app.add_middleware(RequestLogMiddleware)

    # CORS outermost so preflight is answered before anything else runs
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Error handlers ----------

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(IntervalSyncError, _sync_error_handler)

    # ---------- API routes ----------
    api_prefix = "/api"

    app.include_router(health.router, prefix=api_prefix)
    for router in metrics.routers:
        app.include_router(router, prefix=api_prefix)

    return app


app = create_app()
