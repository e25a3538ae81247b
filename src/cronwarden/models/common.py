"""Shared response envelopes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Error detail in API responses."""

    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    details: dict[str, Any] | list[Any] | str | None = None
    trace_id: str = Field(..., min_length=8, max_length=128)
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response body."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = "1.0"
    error: ErrorDetail


class ActorRequest(BaseModel):
    """Body for operator actions that only need to know who is acting."""

    model_config = ConfigDict(extra="forbid")

    actor: str = Field(..., min_length=1, max_length=200)
    reason: str | None = Field(None, max_length=2000)
