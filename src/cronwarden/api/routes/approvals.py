"""Local approval workflow routes (only when no external workflow is configured)."""

import logging

from fastapi import APIRouter

from cronwarden.dependencies import Engine, TraceId
from cronwarden.errors.exceptions import ConflictError
from cronwarden.integrations.adapters.approvals import DatabaseApprovalWorkflow
from cronwarden.models.approval import ApprovalDecisionRequest
from cronwarden.models.enums import ApprovalStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Approvals"])


def _local_workflow(engine) -> DatabaseApprovalWorkflow:
    approvals = engine.collaborators.approvals
    if not isinstance(approvals, DatabaseApprovalWorkflow):
        raise ConflictError(
            "Approvals are handled by an external workflow",
            code="EXTERNAL_APPROVAL_WORKFLOW",
        )
    return approvals


@router.get("/approvals/pending")
async def list_pending_approvals(engine: Engine, job_id: str | None = None) -> list[dict]:
    return await _local_workflow(engine).list_pending(job_id)


@router.post("/approvals/{approval_request_id}/decide")
async def decide_approval(
    approval_request_id: str,
    decision: ApprovalDecisionRequest,
    engine: Engine,
    trace_id: TraceId,
) -> dict:
    """Approve or reject. The waiting deployment resumes on the next scheduler tick or redeploy."""
    return await _local_workflow(engine).decide(
        approval_request_id,
        ApprovalStatus(decision.decision),
        decision.decided_by,
        decision.reason,
    )
