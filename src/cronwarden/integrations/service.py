"""Select port implementations from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.config import Settings
from cronwarden.events.webhook_config import WebhookRegistry
from cronwarden.events.webhook_emitter import WebhookNotifier
from cronwarden.integrations.adapters.approvals import DatabaseApprovalWorkflow
from cronwarden.integrations.adapters.audit import DatabaseAuditLog
from cronwarden.integrations.adapters.http import (
    HttpApprovalWorkflow,
    HttpDependencyOracle,
    HttpExecutionTrigger,
)
from cronwarden.integrations.adapters.memory import (
    InMemoryExecutionTrigger,
    LoggingNotifier,
    StaticDependencyOracle,
    StaticHolidayCalendar,
)
from cronwarden.integrations.ports import (
    ApprovalWorkflowPort,
    AuditLogPort,
    DataDependencyOraclePort,
    ExecutionTriggerPort,
    HolidayCalendarPort,
    NotificationPort,
)

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    approvals: ApprovalWorkflowPort
    oracle: DataDependencyOraclePort
    trigger: ExecutionTriggerPort
    notifier: NotificationPort
    audit: AuditLogPort
    calendars: HolidayCalendarPort

    def describe(self) -> dict[str, str]:
        return {
            "approvals": self.approvals.adapter_type,
            "oracle": self.oracle.adapter_type,
            "trigger": self.trigger.adapter_type,
            "notifier": self.notifier.adapter_type,
            "audit": self.audit.adapter_type,
            "calendars": self.calendars.adapter_type,
        }


def build_collaborators(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> Collaborators:
    """HTTP adapters where a URL is configured, local adapters otherwise."""
    timeout = settings.collaborator_timeout_seconds

    if settings.approval_workflow_url:
        approvals: ApprovalWorkflowPort = HttpApprovalWorkflow(settings.approval_workflow_url, timeout)
    else:
        approvals = DatabaseApprovalWorkflow(session_factory)

    if settings.data_oracle_url:
        oracle: DataDependencyOraclePort = HttpDependencyOracle(settings.data_oracle_url, timeout)
    else:
        logger.warning("No data oracle configured; every data dependency will read as unmet")
        oracle = StaticDependencyOracle()

    if settings.execution_trigger_url:
        trigger: ExecutionTriggerPort = HttpExecutionTrigger(settings.execution_trigger_url, timeout)
    else:
        logger.warning("No execution trigger configured; runs are recorded but nothing executes")
        trigger = InMemoryExecutionTrigger()

    if settings.notification_webhook_urls:
        notifier: NotificationPort = WebhookNotifier(
            WebhookRegistry.from_urls(
                settings.notification_webhook_urls, settings.notification_webhook_secret
            ),
            timeout=timeout,
        )
    else:
        notifier = LoggingNotifier()

    collaborators = Collaborators(
        approvals=approvals,
        oracle=oracle,
        trigger=trigger,
        notifier=notifier,
        audit=DatabaseAuditLog(session_factory),
        calendars=StaticHolidayCalendar(settings.holiday_calendars),
    )
    logger.info("Collaborators: %s", collaborators.describe())
    return collaborators
