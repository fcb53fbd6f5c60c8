"""Deduplication keys and idempotent write queries for interval records.

Dedup key:
    interval_records: (user_id, metric, date, interval_start) — UNIQUE constraint

Every write goes through ``INSERT ... ON CONFLICT DO UPDATE`` against that
constraint, so replaying a sync (retries, restarts, overlapping triggers)
rewrites the same rows instead of adding new ones.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

logger = logging.getLogger("intervalsync.sync.dedup")


def interval_record_key(
    user_id: str, metric: str, target_date: date, interval_start: datetime
) -> str:
    """Generate a dedup key for an interval record.

    This key matches the UNIQUE constraint on interval_records:
    (user_id, metric, date, interval_start).  Aware starts are normalised
    to UTC so the same instant always yields the same key.

    Args:
        user_id:        Record owner.
        metric:         Metric name (e.g. 'steps').
        target_date:    Local date the interval belongs to.
        interval_start: Bucket start.

    Returns:
        Pipe-separated dedup key string.
    """
    if interval_start.tzinfo is not None:
        interval_start = interval_start.astimezone(timezone.utc)
    return f"{user_id}|{metric}|{target_date.isoformat()}|{interval_start.isoformat()}"


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = "*",
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes — safe to call multiple times with the same
    data.  On conflict, updates the non-key columns and bumps updated_at.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        RETURNING clause body, or None for no RETURNING.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query
