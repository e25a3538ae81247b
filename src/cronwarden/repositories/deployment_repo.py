"""Deployment and run repositories."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from cronwarden.db.models.deployment import DeploymentRow, JobRunRow
from cronwarden.models.enums import DeploymentStatus, RunStatus
from cronwarden.repositories.base import BaseRepository


class DeploymentRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, DeploymentRow)

    async def get(self, deployment_id: str) -> DeploymentRow | None:
        return await self.get_by_id("deployment_id", deployment_id)

    async def list_for_job(self, job_id: str, environment: str | None = None) -> list[DeploymentRow]:
        criteria = [DeploymentRow.job_id == job_id]
        if environment:
            criteria.append(DeploymentRow.environment == environment)
        return await self.list_where(*criteria, order_by=DeploymentRow.created_at.desc())

    async def get_in_progress(self, job_id: str, environment: str) -> DeploymentRow | None:
        """Served by the (job_id, environment, status) index."""
        rows = await self.list_where(
            DeploymentRow.job_id == job_id,
            DeploymentRow.environment == environment,
            DeploymentRow.status == DeploymentStatus.IN_PROGRESS.value,
        )
        return rows[0] if rows else None

    async def list_awaiting_approval(self) -> list[DeploymentRow]:
        return await self.list_where(
            DeploymentRow.status == DeploymentStatus.IN_PROGRESS.value,
            DeploymentRow.approval_request_id.is_not(None),
            order_by=DeploymentRow.created_at,
        )

    async def list_live(self, job_id: str, version: int | None = None) -> list[DeploymentRow]:
        """Deployments that currently arm the job (initiated or completed)."""
        criteria = [
            DeploymentRow.job_id == job_id,
            DeploymentRow.status.in_(
                [DeploymentStatus.INITIATED.value, DeploymentStatus.COMPLETED.value]
            ),
        ]
        if version is not None:
            criteria.append(DeploymentRow.version == version)
        return await self.list_where(*criteria, order_by=DeploymentRow.created_at)

    async def list_stale_in_progress(self, cutoff: datetime) -> list[DeploymentRow]:
        """In-progress deployments not waiting on approval that stopped moving before cutoff."""
        return await self.list_where(
            DeploymentRow.status == DeploymentStatus.IN_PROGRESS.value,
            DeploymentRow.approval_request_id.is_(None),
            DeploymentRow.updated_at < cutoff,
        )


class JobRunRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, JobRunRow)

    async def get(self, run_id: str) -> JobRunRow | None:
        return await self.get_by_id("run_id", run_id)

    async def list_running(self, job_id: str) -> list[JobRunRow]:
        return await self.list_where(
            JobRunRow.job_id == job_id,
            JobRunRow.status == RunStatus.RUNNING.value,
            order_by=JobRunRow.started_at,
        )

    async def list_for_job(self, job_id: str, limit: int = 50) -> list[JobRunRow]:
        return await self.list_where(
            JobRunRow.job_id == job_id,
            order_by=JobRunRow.started_at.desc(),
            limit=limit,
        )

    async def get_for_occurrence(
        self, job_id: str, environment: str, fire_time: datetime
    ) -> JobRunRow | None:
        rows = await self.list_where(
            JobRunRow.job_id == job_id,
            JobRunRow.environment == environment,
            JobRunRow.fire_time == fire_time,
        )
        return rows[0] if rows else None
