"""Tests for the HTTP, database and in-memory port adapters."""

import json
from datetime import date

import httpx
import pytest

from cronwarden.config import Settings
from cronwarden.errors.exceptions import CollaboratorUnavailableError, ConflictError, NotFoundError
from cronwarden.integrations.adapters.approvals import DatabaseApprovalWorkflow
from cronwarden.integrations.adapters.audit import DatabaseAuditLog
from cronwarden.integrations.adapters.http import (
    HttpApprovalWorkflow,
    HttpDependencyOracle,
    HttpExecutionTrigger,
)
from cronwarden.integrations.adapters.memory import StaticHolidayCalendar
from cronwarden.integrations.guard import guarded_call
from cronwarden.integrations.service import build_collaborators
from cronwarden.models.enums import ApprovalStatus
from cronwarden.models.job import DataDependency


@pytest.mark.asyncio
async def test_http_approval_workflow():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "POST":
            payload = json.loads(request.content)
            assert payload["approvers"] == ["release-managers"]
            return httpx.Response(201, json={"request_id": "apr_ext1"})
        return httpx.Response(200, json={"status": "approved"})

    workflow = HttpApprovalWorkflow("http://approvals.test/", transport=httpx.MockTransport(handler))

    request_id = await workflow.request_approval("job_a", ["release-managers"], "please")
    status = await workflow.get_status(request_id)

    assert request_id == "apr_ext1"
    assert status == ApprovalStatus.APPROVED
    assert seen == [("POST", "/approvals"), ("GET", "/approvals/apr_ext1")]


@pytest.mark.asyncio
async def test_http_oracle_posts_dependency():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"satisfied": body["source"] == "ready_table"})

    oracle = HttpDependencyOracle("http://oracle.test", transport=httpx.MockTransport(handler))

    ready = DataDependency(source="ready_table", condition="row_count_greater_than_zero")
    missing = DataDependency(source="empty_table", condition="row_count_greater_than_zero")
    assert await oracle.check(ready) is True
    assert await oracle.check(missing) is False


@pytest.mark.asyncio
async def test_http_trigger_and_cancel():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/runs":
            return httpx.Response(202, json={"run_id": "run_ext7"})
        return httpx.Response(204)

    trigger = HttpExecutionTrigger("http://exec.test", transport=httpx.MockTransport(handler))

    assert await trigger.trigger("job_a", 3, "production") == "run_ext7"
    await trigger.cancel("run_ext7")
    assert paths == ["/runs", "/runs/run_ext7/cancel"]


@pytest.mark.asyncio
async def test_http_errors_become_collaborator_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "boom"})

    oracle = HttpDependencyOracle("http://oracle.test", transport=httpx.MockTransport(handler))
    dependency = DataDependency(source="t", condition="file_exists")

    with pytest.raises(httpx.HTTPStatusError):
        await oracle.check(dependency)
    with pytest.raises(CollaboratorUnavailableError) as exc_info:
        await guarded_call("data oracle", oracle.check(dependency), timeout=1.0)
    assert exc_info.value.collaborator == "data oracle"


@pytest.mark.asyncio
async def test_database_approval_workflow(session_factory):
    workflow = DatabaseApprovalWorkflow(session_factory)

    request_id = await workflow.request_approval("job_a", ["cfo"], "close the books")
    assert await workflow.get_status(request_id) == ApprovalStatus.PENDING
    assert [p["approval_request_id"] for p in await workflow.list_pending("job_a")] == [request_id]

    with pytest.raises(ConflictError):
        await workflow.decide(request_id, ApprovalStatus.PENDING, "cfo")

    decided = await workflow.decide(request_id, ApprovalStatus.REJECTED, "cfo", "not this quarter")
    assert decided["status"] == "rejected"
    assert decided["reason"] == "not this quarter"
    assert await workflow.list_pending() == []

    with pytest.raises(ConflictError) as exc_info:
        await workflow.decide(request_id, ApprovalStatus.APPROVED, "cfo")
    assert exc_info.value.code == "ALREADY_DECIDED"

    with pytest.raises(NotFoundError):
        await workflow.get_status("apr_unknown")


@pytest.mark.asyncio
async def test_database_audit_log(session_factory):
    audit = DatabaseAuditLog(session_factory)
    await audit.record("ops-bot", "job.created", "job_a", {"version": 1})
    await audit.record("ops-bot", "job.saved", "job_a", {"version": 2})
    await audit.record("ops-bot", "job.created", "job_b", {"version": 1})

    entries = await audit.list_for_job("job_a")

    assert [e["action"] for e in entries] == ["job.created", "job.saved"]
    assert entries[1]["details"] == {"version": 2}


@pytest.mark.asyncio
async def test_static_holiday_calendar():
    calendar = StaticHolidayCalendar({"uk": [date(2024, 12, 25), date(2024, 12, 26)]})
    assert await calendar.dates("uk") == frozenset({date(2024, 12, 25), date(2024, 12, 26)})
    assert await calendar.dates("unknown") == frozenset()


def test_build_collaborators_defaults_to_local_adapters(session_factory):
    collaborators = build_collaborators(Settings(local_mode=True), session_factory)
    assert collaborators.describe() == {
        "approvals": "database",
        "oracle": "memory",
        "trigger": "memory",
        "notifier": "log",
        "audit": "database",
        "calendars": "static",
    }


def test_build_collaborators_uses_configured_urls(session_factory):
    settings = Settings(
        approval_workflow_url="http://approvals.test",
        data_oracle_url="http://oracle.test",
        execution_trigger_url="http://exec.test",
        notification_webhook_urls=["http://hooks.test/cron"],
        collaborator_timeout_seconds=2.5,
    )
    collaborators = build_collaborators(settings, session_factory)
    assert collaborators.describe()["approvals"] == "http"
    assert collaborators.describe()["oracle"] == "http"
    assert collaborators.describe()["trigger"] == "http"
    assert collaborators.describe()["notifier"] == "webhook"
    assert collaborators.notifier.timeout == 2.5
