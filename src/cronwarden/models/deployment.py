"""Pydantic models for deployments and job runs."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cronwarden.models.enums import DeploymentStatus, Environment, RunStatus


class DeploymentRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment_id: str = Field(..., pattern=r"^dep_[A-Za-z0-9_-]+$")
    job_id: str
    version: int = Field(..., ge=1)
    environment: Environment
    status: DeploymentStatus
    actor: str
    approval_request_id: str | None = None
    reason: str | None = None
    created_at: datetime
    updated_at: datetime


class DeployRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = Field(..., ge=1)
    environment: Environment
    actor: str = Field(..., min_length=1, max_length=200)


class JobRun(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    job_id: str
    version: int
    environment: Environment
    status: RunStatus
    fire_time: datetime
    started_at: datetime
    finished_at: datetime | None = None
    detail: str | None = None


class RunStatusReport(BaseModel):
    """Terminal (or running) status of a run, reported by the execution system."""

    model_config = ConfigDict(extra="forbid")

    status: RunStatus
    detail: str | None = Field(None, max_length=2000)
