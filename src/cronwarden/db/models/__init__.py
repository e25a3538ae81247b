"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from cronwarden.db.models.job_definition import JobDefinitionRow, JobVersionRow
from cronwarden.db.models.deployment import DeploymentRow, JobRunRow
from cronwarden.db.models.approval import ApprovalRequestRow
from cronwarden.db.models.audit_event import AuditEventRow

__all__ = [
    "JobDefinitionRow",
    "JobVersionRow",
    "DeploymentRow",
    "JobRunRow",
    "ApprovalRequestRow",
    "AuditEventRow",
]
