"""Job definition and version history repositories."""

from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from cronwarden.db.models.job_definition import JobDefinitionRow, JobVersionRow
from cronwarden.models.enums import LifecycleStatus
from cronwarden.repositories.base import BaseRepository


class JobDefinitionRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, JobDefinitionRow)

    async def get(self, job_id: str) -> JobDefinitionRow | None:
        return await self.get_by_id("job_id", job_id)

    async def list_filtered(
        self,
        status: str | None = None,
        environment: str | None = None,
    ) -> list[JobDefinitionRow]:
        criteria = []
        if status:
            criteria.append(JobDefinitionRow.lifecycle_status == status)
        if environment:
            criteria.append(JobDefinitionRow.environment == environment)
        return await self.list_where(*criteria, order_by=JobDefinitionRow.created_at)

    async def list_due(self, now: datetime) -> list[JobDefinitionRow]:
        """Scheduled jobs whose next occurrence has arrived and is not deferred past now."""
        return await self.list_where(
            JobDefinitionRow.lifecycle_status == LifecycleStatus.SCHEDULED.value,
            JobDefinitionRow.next_fire_at.is_not(None),
            JobDefinitionRow.next_fire_at <= now,
            or_(JobDefinitionRow.deferred_until.is_(None), JobDefinitionRow.deferred_until <= now),
            order_by=JobDefinitionRow.next_fire_at,
        )

    async def swap_head(self, job_id: str, base_version: int, **values) -> bool:
        """Replace the head only if it is still at ``base_version``."""
        changed = await self.update_where(
            JobDefinitionRow.job_id == job_id,
            JobDefinitionRow.current_version == base_version,
            current_version=base_version + 1,
            **values,
        )
        return changed == 1


class JobVersionRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, JobVersionRow)

    async def get(self, job_id: str, version: int) -> JobVersionRow | None:
        rows = await self.list_where(
            JobVersionRow.job_id == job_id,
            JobVersionRow.version == version,
        )
        return rows[0] if rows else None

    async def list_for_job(self, job_id: str) -> list[JobVersionRow]:
        return await self.list_where(
            JobVersionRow.job_id == job_id,
            order_by=JobVersionRow.version,
        )
