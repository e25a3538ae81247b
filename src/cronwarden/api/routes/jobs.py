"""Job definition API routes: CRUD, versions, rollback, lifecycle and gating preview."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query

from cronwarden.dependencies import Engine, TraceId
from cronwarden.errors.exceptions import ConflictError, ValidationError
from cronwarden.integrations.adapters.audit import DatabaseAuditLog
from cronwarden.models.common import ActorRequest
from cronwarden.models.decision import EvaluateRequest
from cronwarden.models.enums import Environment, LifecycleStatus
from cronwarden.models.job import JobDefinitionCreate, LifecycleReport, SaveJobRequest
from cronwarden.models.version import RollbackRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Jobs"])

# Statuses the execution system may report for a job as a whole
REPORTABLE_STATUSES = {LifecycleStatus.RUNNING, LifecycleStatus.FAILED, LifecycleStatus.COMPLETED}


@router.post("/jobs", status_code=201)
async def create_job(draft: JobDefinitionCreate, engine: Engine, trace_id: TraceId) -> dict:
    definition = await engine.store.create(draft)
    return definition.model_dump(mode="json")


@router.get("/jobs")
async def list_jobs(
    engine: Engine,
    status: LifecycleStatus | None = None,
    environment: Environment | None = None,
    tag: str | None = None,
) -> list[dict]:
    definitions = await engine.store.list_jobs(
        status=status,
        environment=environment.value if environment else None,
        tag=tag,
    )
    return [d.model_dump(mode="json") for d in definitions]


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, engine: Engine) -> dict:
    definition = await engine.store.get(job_id)
    return definition.model_dump(mode="json")


@router.put("/jobs/{job_id}")
async def save_job(job_id: str, body: SaveJobRequest, engine: Engine, trace_id: TraceId) -> dict:
    """Save a new version. 409 CONCURRENT_MODIFICATION when ``base_version`` is stale."""
    version = await engine.store.save(
        job_id,
        body.mutation(),
        body.commit_message,
        body.author,
        body.base_version,
    )
    definition = await engine.store.get(job_id)
    return {"job_id": job_id, "version": version, "job": definition.model_dump(mode="json")}


@router.get("/jobs/{job_id}/history")
async def job_history(job_id: str, engine: Engine) -> list[dict]:
    return [r.model_dump(mode="json") for r in await engine.store.history(job_id)]


@router.get("/jobs/{job_id}/versions/{version}")
async def job_version(job_id: str, version: int, engine: Engine) -> dict:
    record = await engine.store.get_version(job_id, version)
    return record.model_dump(mode="json")


@router.get("/jobs/{job_id}/diff")
async def job_diff(
    job_id: str,
    engine: Engine,
    from_version: int = Query(..., ge=1),
    to_version: int = Query(..., ge=1),
) -> dict:
    diff = await engine.store.diff(job_id, from_version, to_version)
    return diff.model_dump(mode="json")


@router.post("/jobs/{job_id}/rollback")
async def rollback_job(job_id: str, body: RollbackRequest, engine: Engine, trace_id: TraceId) -> dict:
    """Roll back to an earlier version. Re-arming needs a separate deployment."""
    environment = body.environment
    if environment is None:
        environment = (await engine.store.get(job_id)).spec.environment
    outcome = await engine.rollback.rollback_and_redeploy(
        job_id,
        body.target_version,
        environment,
        body.author,
        base_version=body.base_version,
    )
    return outcome.model_dump(mode="json")


@router.post("/jobs/{job_id}/pause")
async def pause_job(job_id: str, body: ActorRequest, engine: Engine) -> dict:
    definition = await engine.store.set_status(
        job_id, LifecycleStatus.PAUSED, body.actor, reason=body.reason
    )
    return definition.model_dump(mode="json")


@router.post("/jobs/{job_id}/resume")
async def resume_job(job_id: str, body: ActorRequest, engine: Engine) -> dict:
    definition = await engine.orchestrator.resume_job(job_id, body.actor)
    return definition.model_dump(mode="json")


@router.post("/jobs/{job_id}/archive")
async def archive_job(job_id: str, body: ActorRequest, engine: Engine) -> dict:
    definition = await engine.store.set_status(
        job_id, LifecycleStatus.ARCHIVED, body.actor, reason=body.reason
    )
    return definition.model_dump(mode="json")


@router.post("/jobs/{job_id}/lifecycle")
async def report_lifecycle(job_id: str, body: LifecycleReport, engine: Engine) -> dict:
    """Record a job-level status reported by the execution system."""
    if body.status not in REPORTABLE_STATUSES:
        raise ValidationError(
            f"Execution system may only report {sorted(s.value for s in REPORTABLE_STATUSES)}",
            details={"status": body.status.value},
        )
    definition = await engine.store.set_status(job_id, body.status, body.actor, reason=body.reason)
    return definition.model_dump(mode="json")


@router.get("/jobs/{job_id}/next-fire-times")
async def next_fire_times(
    job_id: str,
    engine: Engine,
    count: int = Query(5, ge=1, le=50),
    after: datetime | None = None,
) -> dict:
    definition = await engine.store.get(job_id)
    times = await engine.planner.upcoming(
        definition.spec.schedule, after or datetime.now(timezone.utc), count
    )
    return {"job_id": job_id, "fire_times": [t.isoformat() for t in times]}


@router.post("/jobs/{job_id}/evaluate")
async def evaluate_job(job_id: str, body: EvaluateRequest, engine: Engine) -> dict:
    """Preview the gating decision for a fire time (default: now). Nothing is triggered."""
    decision = await engine.evaluator.evaluate(job_id, body.fire_time or datetime.now(timezone.utc))
    return decision.model_dump(mode="json")


@router.get("/jobs/{job_id}/audit")
async def job_audit(job_id: str, engine: Engine, limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
    """Audit trail recorded by the database audit sink, oldest first."""
    audit = engine.collaborators.audit
    if not isinstance(audit, DatabaseAuditLog):
        raise ConflictError("Audit events are recorded by an external sink", code="EXTERNAL_AUDIT_LOG")
    await engine.store.get(job_id)
    return await audit.list_for_job(job_id, limit)
