"""Approval request and audit event repositories."""

from sqlalchemy.ext.asyncio import AsyncSession

from cronwarden.db.models.approval import ApprovalRequestRow
from cronwarden.db.models.audit_event import AuditEventRow
from cronwarden.repositories.base import BaseRepository


class ApprovalRequestRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ApprovalRequestRow)

    async def get(self, approval_request_id: str) -> ApprovalRequestRow | None:
        return await self.get_by_id("approval_request_id", approval_request_id)

    async def list_by_status(self, status: str, job_id: str | None = None) -> list[ApprovalRequestRow]:
        criteria = [ApprovalRequestRow.status == status]
        if job_id:
            criteria.append(ApprovalRequestRow.job_id == job_id)
        return await self.list_where(*criteria, order_by=ApprovalRequestRow.created_at)


class AuditEventRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, AuditEventRow)

    async def list_for_job(self, job_id: str, limit: int = 100) -> list[AuditEventRow]:
        return await self.list_where(
            AuditEventRow.job_id == job_id,
            order_by=AuditEventRow.created_at,
            limit=limit,
        )
