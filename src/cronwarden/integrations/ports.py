"""Abstract ports to the systems cronwarden coordinates but does not own.

Approval routing, data-readiness checks, process execution, notification
delivery, audit sinks and holiday calendars all live behind these
interfaces. Implementations are in ``cronwarden.integrations.adapters``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from cronwarden.models.enums import ApprovalStatus
from cronwarden.models.event import JobEvent
from cronwarden.models.job import DataDependency


class ApprovalWorkflowPort(ABC):
    """Routes approval requests to humans. The core only keeps the request id."""

    adapter_type: str = "unknown"

    @abstractmethod
    async def request_approval(self, job_id: str, approvers: list[str], message: str) -> str:
        """Open an approval request.

        Returns:
            The workflow's request id.
        """
        ...

    @abstractmethod
    async def get_status(self, request_id: str) -> ApprovalStatus:
        ...


class DataDependencyOraclePort(ABC):
    adapter_type: str = "unknown"

    @abstractmethod
    async def check(self, dependency: DataDependency) -> bool:
        """Return True if the data condition currently holds."""
        ...


class ExecutionTriggerPort(ABC):
    """Starts and stops job runs on the external execution system."""

    adapter_type: str = "unknown"

    @abstractmethod
    async def trigger(self, job_id: str, version: int, environment: str) -> str:
        """Start one run of ``job_id@version`` in ``environment``.

        Returns:
            The run id assigned by the execution system.
        """
        ...

    @abstractmethod
    async def cancel(self, run_id: str) -> None:
        ...


class NotificationPort(ABC):
    adapter_type: str = "unknown"

    @abstractmethod
    async def notify(self, event: JobEvent) -> None:
        ...


class AuditLogPort(ABC):
    adapter_type: str = "unknown"

    @abstractmethod
    async def record(self, actor: str, action: str, job_id: str, details: dict[str, Any]) -> None:
        ...


class HolidayCalendarPort(ABC):
    adapter_type: str = "unknown"

    @abstractmethod
    async def dates(self, calendar_id: str) -> frozenset[date]:
        """Excluded dates for ``calendar_id``. Unknown ids yield an empty set."""
        ...
