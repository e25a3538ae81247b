"""Tests for the job definition store: versioning, history, rollback and lifecycle."""

import asyncio

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from cronwarden.errors.exceptions import (
    ConcurrentModificationError,
    InvalidScheduleExpressionError,
    InvalidTransitionError,
    NotFoundError,
    VersionNotFoundError,
)
from cronwarden.events.job_events import JOB_CREATED, JOB_ROLLED_BACK, JOB_SAVED, JOB_STATUS_CHANGED
from cronwarden.models.enums import LifecycleStatus
from cronwarden.models.job import JobMutation, NotificationConfig, SecurityPolicy
from cronwarden.models.schedule import ScheduleSpec
from cronwarden.repositories.job_definition_repo import JobDefinitionRepository


def _schedule(expression: str) -> JobMutation:
    return JobMutation(schedule=ScheduleSpec(expression=expression))


@pytest.mark.asyncio
async def test_create_starts_at_version_one_in_draft(engine, make_draft):
    job = await engine.store.create(make_draft())
    assert job.job_id.startswith("job_")
    assert job.current_version == 1
    assert job.lifecycle_status == LifecycleStatus.DRAFT
    assert job.commit_message == "Initial version"
    assert job.next_fire_at is None
    assert await engine.store.history(job.job_id) == []


@pytest.mark.asyncio
async def test_create_rejects_invalid_schedule(engine, make_draft):
    with pytest.raises(InvalidScheduleExpressionError):
        await engine.store.create(make_draft(schedule={"expression": "61 * * * *"}))
    assert await engine.store.list_jobs() == []


@pytest.mark.asyncio
async def test_save_archives_previous_head(engine, make_draft):
    job = await engine.store.create(make_draft())

    version = await engine.store.save(job.job_id, _schedule("0 6 * * *"), "run at six", "ops-bot", 1)

    assert version == 2
    head = await engine.store.get(job.job_id)
    assert head.current_version == 2
    assert head.spec.schedule.expression == "0 6 * * *"
    assert head.commit_message == "run at six"
    history = await engine.store.history(job.job_id)
    assert [r.version for r in history] == [1]
    assert history[0].snapshot == job.spec
    assert history[0].commit_message == "Initial version"


@pytest.mark.asyncio
async def test_current_version_tracks_history_length(engine, make_draft):
    job = await engine.store.create(make_draft())
    for base, expression in enumerate(["0 1 * * *", "0 2 * * *", "0 3 * * *"], start=1):
        await engine.store.save(job.job_id, _schedule(expression), f"v{base + 1}", "ops-bot", base)

    head = await engine.store.get(job.job_id)
    history = await engine.store.history(job.job_id)
    assert head.current_version == 1 + len(history) == 4
    assert [r.version for r in history] == [1, 2, 3]


@pytest.mark.asyncio
async def test_save_with_stale_base_version_is_refused(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "first", "ops-bot", 1)

    with pytest.raises(ConcurrentModificationError) as exc_info:
        await engine.store.save(job.job_id, _schedule("0 7 * * *"), "second", "ops-bot", 1)

    assert exc_info.value.details["current_version"] == 2
    assert (await engine.store.get(job.job_id)).spec.schedule.expression == "0 6 * * *"


@pytest.mark.asyncio
async def test_concurrent_saves_on_same_base_admit_exactly_one(engine, make_draft):
    job = await engine.store.create(make_draft())

    results = await asyncio.gather(
        *(
            engine.store.save(job.job_id, _schedule(f"{minute} 4 * * *"), f"save {minute}", "ops-bot", 1)
            for minute in range(5)
        ),
        return_exceptions=True,
    )

    assert [r for r in results if not isinstance(r, Exception)] == [2]
    assert all(isinstance(r, ConcurrentModificationError) for r in results if isinstance(r, Exception))
    head = await engine.store.get(job.job_id)
    assert head.current_version == 2
    assert len(await engine.store.history(job.job_id)) == 1


@pytest.mark.asyncio
async def test_save_rejects_invalid_schedule_without_new_version(engine, make_draft):
    job = await engine.store.create(make_draft())
    with pytest.raises(InvalidScheduleExpressionError):
        await engine.store.save(job.job_id, _schedule("* * * * 9"), "bad", "ops-bot", 1)
    assert (await engine.store.get(job.job_id)).current_version == 1


@pytest.mark.asyncio
async def test_save_unknown_job(engine):
    with pytest.raises(NotFoundError):
        await engine.store.save("job_missing", _schedule("0 0 * * *"), "x", "ops-bot", 1)


@pytest.mark.asyncio
async def test_save_returns_job_to_draft(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.orchestrator.deploy(job.job_id, 1, "development", "ops-bot")
    assert (await engine.store.get(job.job_id)).lifecycle_status == LifecycleStatus.SCHEDULED

    await engine.store.save(job.job_id, JobMutation(description="tweak"), "tweak", "ops-bot", 1)

    head = await engine.store.get(job.job_id)
    assert head.lifecycle_status == LifecycleStatus.DRAFT
    assert head.next_fire_at is None


@pytest.mark.asyncio
async def test_rollback_copies_target_snapshot_into_new_version(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "six", "ops-bot", 1)

    version = await engine.store.rollback(job.job_id, 1, "ops-bot")

    assert version == 3
    head = await engine.store.get(job.job_id)
    history = await engine.store.history(job.job_id)
    assert head.spec == history[0].snapshot
    assert head.commit_message == "Rollback to version 1"
    assert [r.version for r in history] == [1, 2]
    # The target version is untouched
    assert (await engine.store.get_version(job.job_id, 1)).snapshot == job.spec


@pytest.mark.asyncio
async def test_rollback_to_missing_or_head_version(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "six", "ops-bot", 1)

    with pytest.raises(VersionNotFoundError):
        await engine.store.rollback(job.job_id, 99, "ops-bot")
    with pytest.raises(VersionNotFoundError):
        await engine.store.rollback(job.job_id, 2, "ops-bot")


@pytest.mark.asyncio
async def test_rollback_with_stale_base(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "six", "ops-bot", 1)
    with pytest.raises(ConcurrentModificationError):
        await engine.store.rollback(job.job_id, 1, "ops-bot", base_version=1)


@pytest.mark.asyncio
async def test_get_version_and_diff(engine, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(
        job.job_id,
        JobMutation(schedule=ScheduleSpec(expression="0 6 * * *"), tags=["etl", "nightly"]),
        "six",
        "ops-bot",
        1,
    )

    head = await engine.store.get_version(job.job_id, 2)
    assert head.commit_message == "six"
    with pytest.raises(VersionNotFoundError):
        await engine.store.get_version(job.job_id, 5)

    diff = await engine.store.diff(job.job_id, 1, 2)
    by_path = {c.path: c for c in diff.changes}
    assert set(by_path) == {"schedule.expression", "tags"}
    assert by_path["schedule.expression"].old == "*/15 9-17 * * 1-5"
    assert by_path["schedule.expression"].new == "0 6 * * *"


@pytest.mark.asyncio
async def test_lifecycle_transitions(engine, make_draft):
    job = await engine.store.create(make_draft())

    with pytest.raises(InvalidTransitionError):
        await engine.store.set_status(job.job_id, LifecycleStatus.PAUSED, "ops-bot")

    archived = await engine.store.set_status(job.job_id, LifecycleStatus.ARCHIVED, "ops-bot")
    assert archived.lifecycle_status == LifecycleStatus.ARCHIVED

    with pytest.raises(InvalidTransitionError):
        await engine.store.set_status(job.job_id, LifecycleStatus.DRAFT, "ops-bot")
    with pytest.raises(InvalidTransitionError):
        await engine.store.save(job.job_id, _schedule("0 6 * * *"), "late", "ops-bot", 1)


@pytest.mark.asyncio
async def test_set_status_rejects_non_scheduling_fields(engine, make_draft):
    job = await engine.store.create(make_draft())
    with pytest.raises(ValueError):
        await engine.store.set_status(job.job_id, LifecycleStatus.ARCHIVED, "ops-bot", spec={})


@pytest.mark.asyncio
async def test_list_jobs_filters(engine, make_draft):
    first = await engine.store.create(make_draft(tags=["finance"]))
    await engine.store.create(make_draft(name="other", environment="production"))
    await engine.store.set_status(first.job_id, LifecycleStatus.ARCHIVED, "ops-bot")

    assert [j.job_id for j in await engine.store.list_jobs(tag="finance")] == [first.job_id]
    assert len(await engine.store.list_jobs(environment="production")) == 1
    assert [j.job_id for j in await engine.store.list_jobs(status=LifecycleStatus.ARCHIVED)] == [first.job_id]


@pytest.mark.asyncio
async def test_events_emitted_after_writes(engine, collaborators, make_draft):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "six", "ops-bot", 1)
    await engine.store.rollback(job.job_id, 1, "ops-bot")
    await engine.store.set_status(job.job_id, LifecycleStatus.ARCHIVED, "ops-bot")

    await engine.events.drain()
    types = [e.event_type for e in collaborators.notifier.events]
    assert types == [JOB_CREATED, JOB_SAVED, JOB_ROLLED_BACK, JOB_STATUS_CHANGED]
    assert [e["action"] for e in collaborators.audit.entries] == types


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_write(engine, make_draft):
    class BrokenNotifier:
        async def notify(self, event):
            raise RuntimeError("smtp down")

    engine.events.notifier = BrokenNotifier()
    job = await engine.store.create(make_draft())
    assert (await engine.store.get(job.job_id)).current_version == 1


@pytest.mark.asyncio
async def test_pinned_status_change_loses_to_a_save_committed_after_its_read(
    engine, make_draft, monkeypatch
):
    job = await engine.store.create(make_draft())
    await engine.store.save(job.job_id, _schedule("0 6 * * *"), "six", "ops-bot", 1)

    real_get = JobDefinitionRepository.get

    async def get_before_save(self, job_id):
        row = await real_get(self, job_id)
        # As if the read happened just before version 2 committed
        set_committed_value(row, "current_version", 1)
        return row

    monkeypatch.setattr(JobDefinitionRepository, "get", get_before_save)
    with pytest.raises(ConcurrentModificationError) as exc_info:
        await engine.store.set_status(
            job.job_id, LifecycleStatus.SCHEDULED, "ops-bot", expected_version=1
        )
    monkeypatch.undo()

    assert exc_info.value.details["current_version"] == 2
    head = await engine.store.get(job.job_id)
    assert head.current_version == 2
    assert head.lifecycle_status == LifecycleStatus.DRAFT


@pytest.mark.asyncio
async def test_security_and_routing_are_versioned(engine, make_draft):
    job = await engine.store.create(make_draft())
    security = SecurityPolicy(
        read_access=["analysts"],
        execute_access=["ops"],
        secret_references=[{"name": "warehouse", "path": "vault://etl/warehouse"}],
        audit_logging_enabled=False,
    )
    notifications = NotificationConfig(slack_channel="#etl-alerts", on_success=True)
    await engine.store.save(
        job.job_id,
        JobMutation(security=security, notifications=notifications),
        "lock down",
        "ops-bot",
        1,
    )

    head = await engine.store.get_version(job.job_id, 2)
    assert head.snapshot.security == security
    assert head.snapshot.notifications.slack_channel == "#etl-alerts"
    assert (await engine.store.get_version(job.job_id, 1)).snapshot.security == SecurityPolicy()

    diff = await engine.store.diff(job.job_id, 1, 2)
    by_path = {c.path: c for c in diff.changes}
    assert by_path["security.audit_logging_enabled"].old is True
    assert by_path["security.audit_logging_enabled"].new is False
    assert by_path["notifications.slack_channel"].new == "#etl-alerts"
    assert "security.secret_references" in by_path
