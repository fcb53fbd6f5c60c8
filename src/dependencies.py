"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Query, Request

from src.config import Settings, get_settings
from src.intervals.errors import ValidationError
from src.intervals.store import UpsertStore


def get_app_settings(request: Request) -> Settings:
    """Settings the app was built with (falls back to the environment)."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_stores(request: Request) -> dict[str, UpsertStore]:
    """Per-metric stores created during app startup."""
    stores: dict[str, UpsertStore] | None = getattr(request.app.state, "stores", None)
    if stores is None:
        raise RuntimeError("Stores not initialized — is the app lifespan running?")
    return stores


def resolve_user_id(user_id: str | None, settings: Settings) -> str:
    """Return the caller's identity.

    An omitted identity resolves to ``settings.default_user_id`` only in
    single-tenant deployments.

    Raises:
        ValidationError: If no userId was given and the deployment is multi-tenant.
    """
    if user_id:
        return user_id
    if settings.single_tenant:
        return settings.default_user_id
    raise ValidationError("userId is required")


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Stores = Annotated[dict[str, UpsertStore], Depends(get_stores)]


async def get_query_user_id(
    settings: AppSettings,
    user_id: str | None = Query(default=None, alias="userId"),
) -> str:
    return resolve_user_id(user_id, settings)


QueryUserId = Annotated[str, Depends(get_query_user_id)]
