"""Tests for job event delivery: queueing, notification switches and audit gating."""

import asyncio
import time

import pytest

from cronwarden.events.job_events import (
    JOB_CREATED,
    JOB_SAVED,
    RUN_FINISHED,
    RUN_TRIGGERED,
    JobEventEmitter,
    notification_wanted,
)
from cronwarden.integrations.adapters.memory import InMemoryAuditLog, InMemoryNotifier
from cronwarden.models.decision import Allow
from cronwarden.models.deployment import RunStatusReport
from cronwarden.models.enums import RunStatus
from cronwarden.models.job import NotificationConfig


class SlowNotifier(InMemoryNotifier):
    async def notify(self, event):
        await asyncio.sleep(2)
        await super().notify(event)


async def _started_run(engine, draft):
    job = await engine.store.create(draft)
    await engine.orchestrator.deploy(job.job_id, 1, "production", "ops-bot")
    head = await engine.store.get(job.job_id)
    runs = await engine.orchestrator.fire(head, head.next_fire_at, Allow())
    return runs[0]


@pytest.mark.asyncio
async def test_slow_notifier_does_not_hold_up_writes(engine, collaborators, test_settings, make_draft):
    engine.events.notifier = SlowNotifier()

    started = time.monotonic()
    job = await engine.store.create(make_draft())
    elapsed = time.monotonic() - started

    assert elapsed < test_settings.collaborator_timeout_seconds
    assert (await engine.store.get(job.job_id)).current_version == 1

    # The stuck notifier is given up on after the collaborator timeout
    await asyncio.wait_for(engine.events.drain(), timeout=1.5)
    assert engine.events.notifier.events == []
    assert [e["action"] for e in collaborators.audit.entries] == [JOB_CREATED]


@pytest.mark.asyncio
async def test_events_are_delivered_in_emission_order():
    notifier, audit = InMemoryNotifier(), InMemoryAuditLog()
    emitter = JobEventEmitter(notifier, audit, timeout_seconds=0.5)

    for version in range(1, 6):
        await emitter.emit(JOB_SAVED, "job_1", "ops-bot", {"version": version})
    await emitter.close()

    assert [e.details["version"] for e in notifier.events] == [1, 2, 3, 4, 5]
    assert [e["details"]["version"] for e in audit.entries] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_failing_audit_log_does_not_stop_notifications():
    class BrokenAuditLog(InMemoryAuditLog):
        async def record(self, actor, action, job_id, details):
            raise RuntimeError("audit store offline")

    notifier = InMemoryNotifier()
    emitter = JobEventEmitter(notifier, BrokenAuditLog(), timeout_seconds=0.5)

    await emitter.emit(JOB_CREATED, "job_1", "ops-bot")
    await emitter.emit(JOB_SAVED, "job_1", "ops-bot", {"version": 2})
    await emitter.close()

    assert [e.event_type for e in notifier.events] == [JOB_CREATED, JOB_SAVED]


@pytest.mark.asyncio
async def test_audit_logging_can_be_switched_off_per_job(engine, collaborators, make_draft):
    await engine.store.create(make_draft(security={"audit_logging_enabled": False}))
    await engine.store.create(make_draft(name="audited"))

    await engine.events.drain()
    assert [e.event_type for e in collaborators.notifier.events] == [JOB_CREATED, JOB_CREATED]
    assert len(collaborators.audit.entries) == 1
    assert collaborators.audit.entries[0]["action"] == JOB_CREATED


@pytest.mark.asyncio
async def test_success_is_audited_but_not_notified_by_default(engine, collaborators, make_draft):
    run = await _started_run(engine, make_draft())
    await engine.orchestrator.report_run(
        run.run_id, RunStatusReport(status=RunStatus.SUCCEEDED), "execution_system"
    )

    await engine.events.drain()
    notified = [e.event_type for e in collaborators.notifier.events]
    assert RUN_TRIGGERED not in notified
    assert RUN_FINISHED not in notified
    audited = [e["action"] for e in collaborators.audit.entries]
    assert RUN_TRIGGERED in audited
    assert RUN_FINISHED in audited


@pytest.mark.asyncio
async def test_failure_notification_carries_routing(engine, collaborators, make_draft):
    notifications = {
        "recipients": ["etl-oncall@example.com"],
        "channels": ["email", "slack"],
        "slack_channel": "#etl-alerts",
        "on_start": True,
    }
    run = await _started_run(engine, make_draft(notifications=notifications))
    await engine.orchestrator.report_run(
        run.run_id, RunStatusReport(status=RunStatus.FAILED, detail="exit 3"), "execution_system"
    )

    await engine.events.drain()
    by_type = {e.event_type: e for e in collaborators.notifier.events}
    assert RUN_TRIGGERED in by_type
    finished = by_type[RUN_FINISHED]
    assert finished.details["status"] == "failed"
    assert finished.routing.recipients == ["etl-oncall@example.com"]
    assert finished.routing.channels == ["email", "slack"]
    assert finished.routing.slack_channel == "#etl-alerts"


def test_notification_switches():
    config = NotificationConfig(on_success=True, on_failure=False, on_timeout=False)

    assert notification_wanted(config, RUN_FINISHED, {"status": "succeeded"})
    assert not notification_wanted(config, RUN_FINISHED, {"status": "failed"})
    assert not notification_wanted(config, RUN_FINISHED, {"status": "timed_out"})
    assert not notification_wanted(config, RUN_TRIGGERED, {})
    assert notification_wanted(config, JOB_SAVED, {"version": 2})
