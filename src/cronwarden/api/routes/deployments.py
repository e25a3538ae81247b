"""Deployment API routes."""

import logging

from fastapi import APIRouter, Response

from cronwarden.dependencies import Engine, TraceId
from cronwarden.models.common import ActorRequest
from cronwarden.models.deployment import DeployRequest
from cronwarden.models.enums import DeploymentStatus, Environment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Deployments"])


@router.post("/jobs/{job_id}/deployments", status_code=201)
async def deploy_job(
    job_id: str,
    body: DeployRequest,
    response: Response,
    engine: Engine,
    trace_id: TraceId,
) -> dict:
    """Deploy the head version. 202 while the deployment waits on approval."""
    record = await engine.orchestrator.deploy(job_id, body.version, body.environment, body.actor)
    if record.status == DeploymentStatus.IN_PROGRESS:
        response.status_code = 202
    return record.model_dump(mode="json")


@router.get("/jobs/{job_id}/deployments")
async def list_job_deployments(
    job_id: str,
    engine: Engine,
    environment: Environment | None = None,
) -> list[dict]:
    await engine.store.get(job_id)
    records = await engine.orchestrator.list_deployments(job_id, environment)
    return [r.model_dump(mode="json") for r in records]


@router.get("/deployments/{deployment_id}")
async def get_deployment(deployment_id: str, engine: Engine) -> dict:
    record = await engine.orchestrator.get_deployment(deployment_id)
    return record.model_dump(mode="json")


@router.post("/deployments/{deployment_id}/cancel")
async def cancel_deployment(deployment_id: str, body: ActorRequest, engine: Engine) -> dict:
    record = await engine.orchestrator.cancel_deployment(deployment_id, body.actor)
    return record.model_dump(mode="json")
