"""Pydantic models for lifecycle events and their webhook envelope."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationRouting(BaseModel):
    """Where the job asked its notifications to go."""

    model_config = ConfigDict(extra="forbid")

    recipients: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    slack_channel: str | None = None
    pagerduty_service_key: str | None = None


class JobEvent(BaseModel):
    """A state transition handed to the notification and audit ports."""

    model_config = ConfigDict(extra="forbid")

    event_id: str = Field(..., pattern=r"^evt_[A-Za-z0-9_-]+$")
    event_type: str
    job_id: str
    actor: str
    occurred_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)
    routing: NotificationRouting | None = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(..., pattern=r"^\d+\.\d+(\.\d+)?$")
    event_type: str
    event_id: str
    occurred_at: datetime
    source_system: str
    signature: str | None = None
    payload: dict[str, Any]
