"""Database-backed approval workflow for deployments without an external workflow.

Requests land in ``approval_requests``; an operator decides them through
``POST /approvals/{id}/decide``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.errors.exceptions import ConflictError, NotFoundError
from cronwarden.integrations.ports import ApprovalWorkflowPort
from cronwarden.models.enums import ApprovalStatus
from cronwarden.repositories.approval_repo import ApprovalRequestRepository
from cronwarden.services.id_generator import APPROVAL_PREFIX, generate_id

logger = logging.getLogger(__name__)


class DatabaseApprovalWorkflow(ApprovalWorkflowPort):
    adapter_type = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def request_approval(self, job_id: str, approvers: list[str], message: str) -> str:
        request_id = generate_id(APPROVAL_PREFIX)
        async with self.session_factory() as session:
            await ApprovalRequestRepository(session).create(
                approval_request_id=request_id,
                job_id=job_id,
                approvers=list(approvers),
                message=message,
                status=ApprovalStatus.PENDING.value,
            )
            await session.commit()
        logger.info("Approval request %s opened for %s", request_id, job_id)
        return request_id

    async def get_status(self, request_id: str) -> ApprovalStatus:
        async with self.session_factory() as session:
            row = await ApprovalRequestRepository(session).get(request_id)
        if row is None:
            raise NotFoundError("Approval request", request_id)
        return ApprovalStatus(row.status)

    async def list_pending(self, job_id: str | None = None) -> list[dict]:
        async with self.session_factory() as session:
            rows = await ApprovalRequestRepository(session).list_by_status(
                ApprovalStatus.PENDING.value, job_id
            )
        return [_request_to_dict(r) for r in rows]

    async def decide(
        self,
        request_id: str,
        decision: ApprovalStatus,
        decided_by: str,
        reason: str | None = None,
    ) -> dict:
        """Record an approver's decision. Only pending requests can be decided."""
        if decision == ApprovalStatus.PENDING:
            raise ConflictError("Decision must be approved or rejected", code="INVALID_DECISION")
        async with self.session_factory() as session:
            repo = ApprovalRequestRepository(session)
            row = await repo.get(request_id)
            if row is None:
                raise NotFoundError("Approval request", request_id)
            if row.status != ApprovalStatus.PENDING.value:
                raise ConflictError(
                    f"Approval request '{request_id}' is already {row.status}",
                    code="ALREADY_DECIDED",
                )
            await repo.update(
                row,
                status=decision.value,
                decided_by=decided_by,
                reason=reason,
                decided_at=datetime.now(timezone.utc),
            )
            await session.commit()
        logger.info("Approval request %s %s by %s", request_id, decision.value, decided_by)
        return _request_to_dict(row)


def _request_to_dict(row) -> dict:
    return {
        "approval_request_id": row.approval_request_id,
        "job_id": row.job_id,
        "approvers": row.approvers,
        "message": row.message,
        "status": row.status,
        "decided_by": row.decided_by,
        "reason": row.reason,
        "decided_at": row.decided_at.isoformat() if row.decided_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
