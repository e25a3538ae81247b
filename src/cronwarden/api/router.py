"""Master API router mounted at /api/v1."""

from fastapi import APIRouter
from cronwarden.api.routes import (
    approvals,
    deployments,
    health,
    jobs,
    runs,
    schedules,
)

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(jobs.router)
api_router.include_router(deployments.router)
api_router.include_router(runs.router)
api_router.include_router(schedules.router)
api_router.include_router(approvals.router)
