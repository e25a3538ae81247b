"""Pydantic models for schedule specifications and validation results."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ScheduleSpec(BaseModel):
    """Stored form of a job schedule: the five-field text plus its zone."""

    model_config = ConfigDict(extra="forbid")

    expression: str = Field(..., min_length=1, max_length=256)
    timezone: str = "UTC"
    holiday_calendar_id: str | None = Field(None, max_length=128)


class FieldError(BaseModel):
    """One offending token in a schedule expression."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    token: str
    message: str


class ScheduleValidationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expression: str = Field(..., min_length=1, max_length=256)
    timezone: str = "UTC"
    holiday_calendar_id: str | None = None
    after: datetime | None = None
    count: int = Field(5, ge=0, le=50)


class ScheduleValidationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valid: bool
    normalized: str | None = None
    errors: list[FieldError] = Field(default_factory=list)
    next_fire_times: list[datetime] = Field(default_factory=list)
