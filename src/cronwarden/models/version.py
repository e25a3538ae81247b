"""Pydantic models for version history, diffs and rollback results."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cronwarden.models.enums import Environment
from cronwarden.models.job import JobSpec


class VersionRecord(BaseModel):
    """Immutable snapshot of one version of a job definition."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str
    version: int = Field(..., ge=1)
    snapshot: JobSpec
    commit_message: str
    author: str
    created_at: datetime


class FieldChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    old: Any = None
    new: Any = None


class VersionDiff(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str
    from_version: int
    to_version: int
    changes: list[FieldChange]


class RollbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_version: int = Field(..., ge=1)
    author: str = Field(..., min_length=1, max_length=200)
    environment: Environment | None = None
    base_version: int | None = Field(None, ge=1)


class RollbackOutcome(BaseModel):
    """Result of a rollback. Re-arming requires a separate deploy with these values."""

    model_config = ConfigDict(extra="forbid")

    job_id: str
    restored_from_version: int
    new_version: int
    environment: Environment
    superseded_deployment_ids: list[str] = Field(default_factory=list)
