"""asyncpg connection pool and the interval_records schema.

The pool is created once at app startup and closed at shutdown.  Every
helper acquires a connection inside a transaction so a statement either
commits whole or not at all.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("intervalsync.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None

INTERVAL_RECORDS_DDL = """
CREATE TABLE IF NOT EXISTS interval_records (
    record_id      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id        TEXT NOT NULL,
    metric         TEXT NOT NULL,
    date           DATE NOT NULL,
    interval_start TIMESTAMPTZ NOT NULL,
    interval_end   TIMESTAMPTZ NOT NULL,
    time_label     TEXT NOT NULL,
    metric_value   DOUBLE PRECISION NOT NULL DEFAULT 0,
    sample_count   INTEGER NOT NULL DEFAULT 0,
    device_source  TEXT NOT NULL DEFAULT 'health_connect',
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT uq_interval_records_key UNIQUE (user_id, metric, date, interval_start),
    CONSTRAINT ck_interval_records_width
        CHECK (interval_end = interval_start + INTERVAL '5 minutes'),
    CONSTRAINT ck_interval_records_sample_count CHECK (sample_count >= 0)
);
CREATE INDEX IF NOT EXISTS ix_interval_records_user_day
    ON interval_records (user_id, metric, date);
"""


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=1,
        max_size=10,
        command_timeout=10,
    )
    logger.info("Database pool initialized (min=1, max=10)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


async def ensure_schema(pool: asyncpg.Pool | None = None) -> None:
    """Create interval_records and its indexes if they are missing."""
    target = pool or get_pool()
    async with target.acquire() as conn:
        await conn.execute(INTERVAL_RECORDS_DDL)
    logger.info("interval_records schema ensured")


@asynccontextmanager
async def get_connection(
    pool: asyncpg.Pool | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection wrapped in a transaction.

    Usage::

        async with get_connection() as conn:
            rows = await conn.fetch("SELECT * FROM interval_records WHERE date = $1", today)
    """
    target = pool or get_pool()
    async with target.acquire() as conn:
        async with conn.transaction():
            yield conn


async def fetch(query: str, *args: Any, pool: asyncpg.Pool | None = None) -> list[asyncpg.Record]:
    """Fetch rows."""
    async with get_connection(pool) as conn:
        return await conn.fetch(query, *args)


async def fetchrow(
    query: str, *args: Any, pool: asyncpg.Pool | None = None
) -> asyncpg.Record | None:
    """Fetch a single row."""
    async with get_connection(pool) as conn:
        return await conn.fetchrow(query, *args)
