"""Custom exception classes for cronwarden."""


class CronWardenError(Exception):
    """Base exception for cronwarden."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(CronWardenError):
    """Schema or request validation failure."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class InvalidScheduleExpressionError(CronWardenError):
    """One or more schedule fields failed validation."""

    def __init__(self, errors: list):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field} '{e.token}': {e.message}" for e in self.errors)
        super().__init__(
            "INVALID_SCHEDULE_EXPRESSION",
            f"Invalid schedule expression: {summary}",
            details=[e.model_dump() for e in self.errors],
            status_code=400,
        )


class ScheduleHorizonExceededError(CronWardenError):
    """No fire time exists within the bounded search horizon."""

    def __init__(self, expression: str, horizon_days: int):
        super().__init__(
            "SCHEDULE_UNSATISFIABLE",
            f"Schedule '{expression}' has no fire time within {horizon_days} days",
            details={"expression": expression, "horizon_days": horizon_days},
            status_code=422,
        )


class NotFoundError(CronWardenError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class VersionNotFoundError(NotFoundError):
    """Requested version is absent from the job's history."""

    def __init__(self, job_id: str, version: int):
        super().__init__("Version", f"{job_id}@{version}")
        self.code = "VERSION_NOT_FOUND"


class ConflictError(CronWardenError):
    """Resource state conflict."""

    def __init__(self, message: str, code: str = "CONFLICT", details=None):
        super().__init__(code, message, details, status_code=409)


class ConcurrentModificationError(ConflictError):
    """Optimistic-lock conflict: the caller's base version is stale. Refetch and retry."""

    def __init__(self, job_id: str, base_version: int, current_version: int | None = None):
        message = f"Job '{job_id}' was modified concurrently (base version {base_version}"
        if current_version is not None:
            message += f", current version {current_version}"
        super().__init__(
            message + ")",
            code="CONCURRENT_MODIFICATION",
            details={"job_id": job_id, "base_version": base_version, "current_version": current_version},
        )


class AlreadyInProgressError(ConflictError):
    """A deployment for the same job and environment is already in progress."""

    def __init__(self, job_id: str, environment: str):
        super().__init__(
            f"A deployment of job '{job_id}' to {environment} is already in progress",
            code="ALREADY_IN_PROGRESS",
            details={"job_id": job_id, "environment": environment},
        )


class VersionNotHeadError(ConflictError):
    """Deployment requested for a version that is not the current head."""

    def __init__(self, job_id: str, requested: int, current: int):
        super().__init__(
            f"Version {requested} of job '{job_id}' is not the current head ({current}); "
            "roll back to it first to deploy it",
            code="VERSION_NOT_HEAD",
            details={"job_id": job_id, "requested_version": requested, "current_version": current},
        )


class InvalidTransitionError(ConflictError):
    """Lifecycle transition not allowed from the current status."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(
            f"Job '{job_id}' cannot move from {current} to {target}",
            code="INVALID_TRANSITION",
            details={"job_id": job_id, "from": current, "to": target},
        )


class ApprovalRejectedError(ConflictError):
    """The approval request for a deployment was rejected. The job is back in draft."""

    def __init__(self, job_id: str, approval_request_id: str, deployment_id: str):
        super().__init__(
            f"Deployment {deployment_id} of job '{job_id}' failed: approval rejected",
            code="APPROVAL_REJECTED",
            details={
                "job_id": job_id,
                "approval_request_id": approval_request_id,
                "deployment_id": deployment_id,
            },
        )


class DependencyUnresolvedError(CronWardenError):
    """One or more data dependencies do not currently hold."""

    def __init__(self, unmet: list[str]):
        self.unmet = list(unmet)
        super().__init__(
            "DEPENDENCY_UNRESOLVED",
            "unmet data dependencies: " + ", ".join(self.unmet),
            details={"unmet": self.unmet},
            status_code=424,
        )


class CollaboratorUnavailableError(CronWardenError):
    """An external port timed out or failed."""

    def __init__(self, collaborator: str, cause: str):
        self.collaborator = collaborator
        self.cause = cause
        super().__init__(
            "COLLABORATOR_UNAVAILABLE",
            f"{collaborator} unavailable: {cause}",
            details={"collaborator": collaborator},
            status_code=503,
        )
