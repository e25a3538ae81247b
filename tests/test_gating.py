"""Tests for the gating evaluator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from cronwarden.models.decision import Allow, Defer, Deny
from cronwarden.models.enums import ApprovalStatus
from cronwarden.services.gating.evaluator import Candidate, order_by_priority

DEPENDENCY = {"source": "s3://warehouse/orders/_SUCCESS", "condition": "file_exists"}


async def _deployed(engine, draft):
    job = await engine.store.create(draft)
    await engine.orchestrator.deploy(job.job_id, 1, job.spec.environment, "ops-bot")
    return await engine.store.get(job.job_id)


def _soon() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_scheduled_job_without_gates_is_allowed(engine, make_draft):
    job = await _deployed(engine, make_draft())
    decision = await engine.evaluator.evaluate(job.job_id, _soon())
    assert decision == Allow()


@pytest.mark.asyncio
async def test_unscheduled_job_is_denied(engine, make_draft):
    job = await engine.store.create(make_draft())
    decision = await engine.evaluator.evaluate(job.job_id, _soon())
    assert isinstance(decision, Deny)
    assert decision.reason == "not scheduled (status is draft)"


@pytest.mark.asyncio
async def test_forbid_policy_denies_while_a_run_is_active(engine, make_draft):
    job = await _deployed(engine, make_draft())
    runs = await engine.orchestrator.fire(job, _soon(), Allow())

    decision = await engine.evaluator.evaluate(job.job_id, _soon())

    assert isinstance(decision, Deny)
    assert runs[0].run_id in decision.reason


@pytest.mark.asyncio
async def test_replace_policy_allows_and_names_runs_to_cancel(engine, make_draft):
    draft = make_draft(execution={"command": "/opt/jobs/export.sh", "concurrency_policy": "replace"})
    job = await _deployed(engine, draft)
    runs = await engine.orchestrator.fire(job, _soon(), Allow())

    decision = await engine.evaluator.evaluate(job.job_id, _soon())

    assert decision == Allow(cancel_run_ids=(runs[0].run_id,))


@pytest.mark.asyncio
async def test_allow_policy_ignores_active_runs(engine, make_draft):
    draft = make_draft(execution={"command": "/opt/jobs/export.sh", "concurrency_policy": "allow"})
    job = await _deployed(engine, draft)
    await engine.orchestrator.fire(job, _soon(), Allow())

    assert await engine.evaluator.evaluate(job.job_id, _soon()) == Allow()


@pytest.mark.asyncio
async def test_unmet_dependency_defers_until_it_holds(engine, collaborators, make_draft):
    job = await _deployed(engine, make_draft(gating={"data_dependencies": [DEPENDENCY]}))
    fire_time = _soon()

    decision = await engine.evaluator.evaluate(job.job_id, fire_time)
    assert isinstance(decision, Defer)
    assert "s3://warehouse/orders/_SUCCESS" in decision.reason
    assert decision.retry_after == fire_time + timedelta(seconds=60)

    collaborators.oracle.set(DEPENDENCY["source"], True)
    assert await engine.evaluator.evaluate(job.job_id, fire_time) == Allow()


@pytest.mark.asyncio
async def test_retry_after_is_measured_from_now_for_past_fire_times(engine, make_draft):
    job = await _deployed(engine, make_draft(gating={"data_dependencies": [DEPENDENCY]}))
    before = datetime.now(timezone.utc)

    decision = await engine.evaluator.evaluate(job.job_id, before - timedelta(hours=1))

    assert isinstance(decision, Defer)
    assert decision.retry_after >= before + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_failing_oracle_defers_instead_of_denying(engine, make_draft):
    class BrokenOracle:
        async def check(self, dependency):
            raise ConnectionError("oracle unreachable")

    job = await _deployed(engine, make_draft(gating={"data_dependencies": [DEPENDENCY]}))
    engine.evaluator.oracle = BrokenOracle()

    decision = await engine.evaluator.evaluate(job.job_id, _soon())

    assert isinstance(decision, Defer)
    assert "data oracle unavailable" in decision.reason


@pytest.mark.asyncio
async def test_slow_oracle_times_out_into_defer(engine, make_draft):
    class SlowOracle:
        async def check(self, dependency):
            await asyncio.sleep(5)
            return True

    job = await _deployed(engine, make_draft(gating={"data_dependencies": [DEPENDENCY]}))
    engine.evaluator.oracle = SlowOracle()

    decision = await engine.evaluator.evaluate(job.job_id, _soon())

    assert isinstance(decision, Defer)


@pytest.mark.asyncio
async def test_approval_no_longer_granted_defers(engine, collaborators, make_draft):
    job = await engine.store.create(make_draft(gating={"manual_approval_required": True}))
    pending = await engine.orchestrator.deploy(job.job_id, 1, "development", "ops-bot")
    collaborators.approvals.decide(pending.approval_request_id, ApprovalStatus.APPROVED)
    await engine.orchestrator.deploy(job.job_id, 1, "development", "ops-bot")

    assert await engine.evaluator.evaluate(job.job_id, _soon()) == Allow()

    collaborators.approvals.decide(pending.approval_request_id, ApprovalStatus.PENDING)
    decision = await engine.evaluator.evaluate(job.job_id, _soon())
    assert isinstance(decision, Defer)
    assert decision.reason == f"approval {pending.approval_request_id} is pending"


@pytest.mark.asyncio
async def test_status_is_checked_before_dependencies(engine, make_draft):
    class ExplodingOracle:
        async def check(self, dependency):
            raise AssertionError("oracle must not be consulted")

    job = await engine.store.create(make_draft(gating={"data_dependencies": [DEPENDENCY]}))
    engine.evaluator.oracle = ExplodingOracle()

    assert isinstance(await engine.evaluator.evaluate(job.job_id, _soon()), Deny)


def test_order_by_priority_breaks_ties_by_job_id():
    now = datetime.now(timezone.utc)
    ordered = order_by_priority(
        [
            Candidate("job_b", 50, now),
            Candidate("job_c", 90, now),
            Candidate("job_a", 50, now),
        ]
    )
    assert [c.job_id for c in ordered] == ["job_c", "job_a", "job_b"]
