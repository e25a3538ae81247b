"""In-process adapters for local mode and tests.

State lives in plain dicts on the instance; nothing survives a restart.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from cronwarden.integrations.ports import (
    ApprovalWorkflowPort,
    AuditLogPort,
    DataDependencyOraclePort,
    ExecutionTriggerPort,
    HolidayCalendarPort,
    NotificationPort,
)
from cronwarden.models.enums import ApprovalStatus
from cronwarden.models.event import JobEvent
from cronwarden.models.job import DataDependency
from cronwarden.services.id_generator import APPROVAL_PREFIX, RUN_PREFIX, generate_id

logger = logging.getLogger(__name__)


class InMemoryApprovalWorkflow(ApprovalWorkflowPort):
    adapter_type = "memory"

    def __init__(self) -> None:
        self.requests: dict[str, dict] = {}

    async def request_approval(self, job_id: str, approvers: list[str], message: str) -> str:
        request_id = generate_id(APPROVAL_PREFIX)
        self.requests[request_id] = {
            "job_id": job_id,
            "approvers": list(approvers),
            "message": message,
            "status": ApprovalStatus.PENDING,
        }
        return request_id

    async def get_status(self, request_id: str) -> ApprovalStatus:
        request = self.requests.get(request_id)
        if request is None:
            raise KeyError(f"Unknown approval request {request_id}")
        return request["status"]

    def decide(self, request_id: str, status: ApprovalStatus) -> None:
        self.requests[request_id]["status"] = status


class StaticDependencyOracle(DataDependencyOraclePort):
    """Answers from a source -> bool table. Unknown sources are unmet."""

    adapter_type = "memory"

    def __init__(self, satisfied: dict[str, bool] | None = None) -> None:
        self.satisfied = dict(satisfied or {})

    def set(self, source: str, holds: bool) -> None:
        self.satisfied[source] = holds

    async def check(self, dependency: DataDependency) -> bool:
        return self.satisfied.get(dependency.source, False)


class InMemoryExecutionTrigger(ExecutionTriggerPort):
    adapter_type = "memory"

    def __init__(self) -> None:
        self.triggered: list[dict] = []
        self.cancelled: list[str] = []

    async def trigger(self, job_id: str, version: int, environment: str) -> str:
        run_id = generate_id(RUN_PREFIX)
        self.triggered.append(
            {"run_id": run_id, "job_id": job_id, "version": version, "environment": environment}
        )
        logger.info("Triggered %s@%d in %s as %s", job_id, version, environment, run_id)
        return run_id

    async def cancel(self, run_id: str) -> None:
        self.cancelled.append(run_id)


class InMemoryNotifier(NotificationPort):
    adapter_type = "memory"

    def __init__(self) -> None:
        self.events: list[JobEvent] = []

    async def notify(self, event: JobEvent) -> None:
        self.events.append(event)


class LoggingNotifier(NotificationPort):
    adapter_type = "log"

    async def notify(self, event: JobEvent) -> None:
        logger.info("Job event %s for %s by %s", event.event_type, event.job_id, event.actor)


class InMemoryAuditLog(AuditLogPort):
    adapter_type = "memory"

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, actor: str, action: str, job_id: str, details: dict[str, Any]) -> None:
        self.entries.append({"actor": actor, "action": action, "job_id": job_id, "details": details})


class StaticHolidayCalendar(HolidayCalendarPort):
    adapter_type = "static"

    def __init__(self, calendars: dict[str, list[date]] | None = None) -> None:
        self.calendars = {
            calendar_id: frozenset(days) for calendar_id, days in (calendars or {}).items()
        }

    async def dates(self, calendar_id: str) -> frozenset[date]:
        return self.calendars.get(calendar_id, frozenset())
