"""Job lifecycle events, handed to the notification and audit ports.

Emission happens after the state change has committed and never waits on
the ports: events are queued and delivered by a background task, one at a
time and in emission order, each port call bounded by the collaborator
timeout. A failing or slow port is logged and otherwise ignored; the change
it describes already happened.
"""

import asyncio
import logging
from datetime import datetime, timezone

from cronwarden.errors.exceptions import CollaboratorUnavailableError
from cronwarden.integrations.guard import guarded_call
from cronwarden.integrations.ports import AuditLogPort, NotificationPort
from cronwarden.models.event import JobEvent, NotificationRouting
from cronwarden.models.job import JobSpec, NotificationConfig
from cronwarden.services.id_generator import EVENT_PREFIX, generate_id

logger = logging.getLogger(__name__)

# Event type constants
JOB_CREATED = "job.created"
JOB_SAVED = "job.saved"
JOB_ROLLED_BACK = "job.rolled_back"
JOB_STATUS_CHANGED = "job.status_changed"
DEPLOYMENT_REQUESTED_APPROVAL = "deployment.approval_requested"
DEPLOYMENT_INITIATED = "deployment.initiated"
DEPLOYMENT_FAILED = "deployment.failed"
DEPLOYMENT_CANCELLED = "deployment.cancelled"
DEPLOYMENT_ROLLED_BACK = "deployment.rolled_back"
RUN_TRIGGERED = "run.triggered"
RUN_TRIGGER_FAILED = "run.trigger_failed"
RUN_CANCELLED = "run.cancelled"
RUN_FINISHED = "run.finished"
OCCURRENCE_SKIPPED = "occurrence.skipped"


def notification_wanted(config: NotificationConfig, event_type: str, details: dict) -> bool:
    """Apply the job's on_start/on_success/on_failure/on_timeout switches.

    Only run events are filtered; lifecycle and deployment events always go out.
    """
    if event_type == RUN_TRIGGERED:
        return config.on_start
    if event_type == RUN_TRIGGER_FAILED:
        return config.on_failure
    if event_type == RUN_FINISHED:
        status = details.get("status")
        if status == "succeeded":
            return config.on_success
        if status == "timed_out":
            return config.on_timeout
        return config.on_failure
    return True


def routing_for(config: NotificationConfig) -> NotificationRouting:
    return NotificationRouting(
        recipients=list(config.recipients),
        channels=[channel.value for channel in config.channels],
        slack_channel=config.slack_channel,
        pagerduty_service_key=config.pagerduty_service_key,
    )


class JobEventEmitter:
    def __init__(self, notifier: NotificationPort, audit: AuditLogPort, timeout_seconds: float = 5.0):
        self.notifier = notifier
        self.audit = audit
        self.timeout_seconds = timeout_seconds
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    async def emit(
        self,
        event_type: str,
        job_id: str,
        actor: str,
        details: dict | None = None,
        spec: JobSpec | None = None,
    ) -> JobEvent:
        """Queue an event for delivery and return it without waiting.

        With ``spec`` given, the job's notification switches decide whether
        the notifier sees the event, its routing travels with the event, and
        ``security.audit_logging_enabled`` decides whether it is audited.
        """
        details = details or {}
        notify = audit = True
        routing = None
        if spec is not None:
            notify = notification_wanted(spec.notifications, event_type, details)
            audit = spec.security.audit_logging_enabled
            routing = routing_for(spec.notifications)

        event = JobEvent(
            event_id=generate_id(EVENT_PREFIX),
            event_type=event_type,
            job_id=job_id,
            actor=actor,
            occurred_at=datetime.now(timezone.utc),
            details=details,
            routing=routing,
        )
        if notify or audit:
            self._enqueue((event, notify, audit))
        return event

    def _enqueue(self, item: tuple[JobEvent, bool, bool]) -> None:
        if self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._run(self._queue), name="job-event-delivery")
        self._queue.put_nowait(item)

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            event, notify, audit = await queue.get()
            try:
                await self._deliver(event, notify, audit)
            finally:
                queue.task_done()

    async def _deliver(self, event: JobEvent, notify: bool, audit: bool) -> None:
        calls = {}
        if notify:
            calls["notifier"] = self.notifier.notify(event)
        if audit:
            calls["audit log"] = self.audit.record(
                event.actor, event.event_type, event.job_id, event.details
            )
        results = await asyncio.gather(
            *(guarded_call(port, call, self.timeout_seconds) for port, call in calls.items()),
            return_exceptions=True,
        )
        for port, result in zip(calls, results):
            if isinstance(result, CollaboratorUnavailableError):
                logger.warning(
                    "Delivery of %s for %s to %s failed: %s",
                    event.event_type, event.job_id, port, result.cause,
                )

    async def drain(self) -> None:
        """Wait until every event queued so far has been delivered (or given up on)."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
