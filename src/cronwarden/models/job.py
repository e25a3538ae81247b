"""Pydantic models for JobDefinition and its versioned content."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cronwarden.models.enums import (
    ConcurrencyPolicy,
    Criticality,
    DependencyCondition,
    Environment,
    LifecycleStatus,
    NotificationChannel,
    RetryStrategy,
)
from cronwarden.models.schedule import ScheduleSpec


class RetryPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(3, ge=0, le=100)
    delay_seconds: int = Field(60, ge=0)
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF


class ResourceLimits(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cpu_units: int = Field(1024, gt=0)
    memory_mb: int = Field(512, gt=0)


class ExecutionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str = Field(..., min_length=1)
    arguments: list[str] = Field(default_factory=list)
    working_directory: str = "/"
    timeout_seconds: int = Field(300, gt=0)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.FORBID
    output_capture_enabled: bool = True


class DataDependency(BaseModel):
    """A data-readiness predicate checked by the dependency oracle before each run."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., min_length=1, max_length=500)
    condition: DependencyCondition
    value: str | int | float | None = None

    @model_validator(mode="after")
    def _date_condition_needs_value(self) -> "DataDependency":
        if self.condition == DependencyCondition.LAST_MODIFIED_AFTER_DATE and self.value is None:
            raise ValueError("last_modified_after_date requires a value")
        return self

    def describe(self) -> str:
        if self.value is None:
            return f"{self.source} ({self.condition})"
        return f"{self.source} ({self.condition} {self.value})"


class GatingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    manual_approval_required: bool = False
    approvers: list[str] = Field(default_factory=list)
    data_dependencies: list[DataDependency] = Field(default_factory=list)
    queue_priority: int = Field(50, ge=1, le=100)
    max_runtime_violations_before_alert: int = Field(5, ge=0)


class NotificationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    on_success: bool = False
    on_failure: bool = True
    on_timeout: bool = True
    on_start: bool = False
    recipients: list[str] = Field(default_factory=list)
    channels: list[NotificationChannel] = Field(default_factory=lambda: [NotificationChannel.EMAIL])
    slack_channel: str | None = Field(None, max_length=200)
    pagerduty_service_key: str | None = Field(None, max_length=200)


class SecretReference(BaseModel):
    """Pointer to a secret held by an external secret store. The value is never stored."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    path: str = Field(..., min_length=1, max_length=1000)


class SecurityPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    read_access: list[str] = Field(default_factory=list)
    write_access: list[str] = Field(default_factory=list)
    execute_access: list[str] = Field(default_factory=list)
    encrypted_parameters: list[str] = Field(default_factory=list)
    secret_references: list[SecretReference] = Field(default_factory=list)
    audit_logging_enabled: bool = True


class JobSpec(BaseModel):
    """Everything about a job that is versioned. Snapshots store exactly this."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    owner: str = Field(..., min_length=1, max_length=200)
    team: str | None = None
    criticality: Criticality = Criticality.MEDIUM
    tags: list[str] = Field(default_factory=list)
    environment: Environment = Environment.DEVELOPMENT
    schedule: ScheduleSpec
    execution: ExecutionConfig
    gating: GatingConfig = Field(default_factory=GatingConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)


class JobDefinitionCreate(JobSpec):
    """Draft submitted to create a job (becomes version 1)."""

    commit_message: str = Field("Initial version", min_length=1, max_length=2000)
    author: str = Field(..., min_length=1, max_length=200)

    def to_spec(self) -> JobSpec:
        return JobSpec.model_validate(self.model_dump(exclude={"commit_message", "author"}))


class JobMutation(BaseModel):
    """Partial change to a JobSpec. Sections given here replace the stored ones whole."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    owner: str | None = Field(None, min_length=1, max_length=200)
    team: str | None = None
    criticality: Criticality | None = None
    tags: list[str] | None = None
    environment: Environment | None = None
    schedule: ScheduleSpec | None = None
    execution: ExecutionConfig | None = None
    gating: GatingConfig | None = None
    notifications: NotificationConfig | None = None
    security: SecurityPolicy | None = None

    def apply(self, spec: JobSpec) -> JobSpec:
        """Return a new JobSpec with every explicitly set field replaced."""
        changes = {name: getattr(self, name) for name in self.model_fields_set}
        merged = spec.model_dump()
        for name, value in changes.items():
            merged[name] = value.model_dump() if isinstance(value, BaseModel) else value
        return JobSpec.model_validate(merged)


class SaveJobRequest(JobMutation):
    """HTTP body for saving a new version."""

    base_version: int = Field(..., ge=1)
    commit_message: str = Field(..., min_length=1, max_length=2000)
    author: str = Field(..., min_length=1, max_length=200)

    def mutation(self) -> JobMutation:
        fields = self.model_fields_set - {"base_version", "commit_message", "author"}
        return JobMutation.model_validate(self.model_dump(include=fields))


class JobDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., pattern=r"^job_[A-Za-z0-9_-]+$")
    current_version: int = Field(..., ge=1)
    lifecycle_status: LifecycleStatus
    spec: JobSpec
    commit_message: str
    created_by: str
    updated_by: str
    created_at: datetime
    version_created_at: datetime
    approval_request_id: str | None = None
    next_fire_at: datetime | None = None
    deferred_until: datetime | None = None
    last_fire_at: datetime | None = None

    @property
    def awaiting_approval(self) -> bool:
        return (
            self.spec.gating.manual_approval_required
            and self.lifecycle_status == LifecycleStatus.DRAFT
            and self.approval_request_id is not None
        )


class LifecycleReport(BaseModel):
    """Job-level status reported by the execution system."""

    model_config = ConfigDict(extra="forbid")

    status: LifecycleStatus
    actor: str = Field(..., min_length=1, max_length=200)
    reason: str | None = None
