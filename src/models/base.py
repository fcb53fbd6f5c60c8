"""Shared Pydantic base models and response wrappers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class IntervalSyncBase(BaseModel):
    """Base model with shared config for all request/response schemas.

    Field names are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )


class ErrorResponse(IntervalSyncBase):
    success: bool = False
    message: str
    error: str | None = None
