"""Run status reporting and listing."""

from fastapi import APIRouter, Query

from cronwarden.dependencies import Engine
from cronwarden.models.deployment import RunStatusReport

router = APIRouter(tags=["Runs"])

EXECUTION_ACTOR = "execution_system"


@router.post("/runs/{run_id}/status")
async def report_run_status(run_id: str, body: RunStatusReport, engine: Engine) -> dict:
    run = await engine.orchestrator.report_run(run_id, body, EXECUTION_ACTOR)
    return run.model_dump(mode="json")


@router.get("/jobs/{job_id}/runs")
async def list_job_runs(job_id: str, engine: Engine, limit: int = Query(50, ge=1, le=500)) -> list[dict]:
    await engine.store.get(job_id)
    return [r.model_dump(mode="json") for r in await engine.orchestrator.list_runs(job_id, limit)]
