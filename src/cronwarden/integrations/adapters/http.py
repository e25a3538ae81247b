"""HTTP adapters for the approval workflow, data oracle and execution trigger.

Each adapter talks JSON to a single base URL. Transport errors and non-2xx
responses propagate as ``httpx.HTTPError``; callers decide whether that
means Defer (gating) or a failed request (API).
"""

from __future__ import annotations

import logging

import httpx

from cronwarden.integrations.ports import (
    ApprovalWorkflowPort,
    DataDependencyOraclePort,
    ExecutionTriggerPort,
)
from cronwarden.models.enums import ApprovalStatus
from cronwarden.models.job import DataDependency

logger = logging.getLogger(__name__)


class _HttpAdapter:
    """Shared client construction. ``transport`` lets tests inject httpx.MockTransport."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )


class HttpApprovalWorkflow(_HttpAdapter, ApprovalWorkflowPort):
    """``POST /approvals`` opens a request, ``GET /approvals/{id}`` reads its status."""

    adapter_type = "http"

    async def request_approval(self, job_id: str, approvers: list[str], message: str) -> str:
        async with self._client() as client:
            response = await client.post(
                "/approvals",
                json={"job_id": job_id, "approvers": approvers, "message": message},
            )
            response.raise_for_status()
        request_id = response.json()["request_id"]
        logger.info("Opened approval request %s for %s", request_id, job_id)
        return request_id

    async def get_status(self, request_id: str) -> ApprovalStatus:
        async with self._client() as client:
            response = await client.get(f"/approvals/{request_id}")
            response.raise_for_status()
        return ApprovalStatus(response.json()["status"])


class HttpDependencyOracle(_HttpAdapter, DataDependencyOraclePort):
    adapter_type = "http"

    async def check(self, dependency: DataDependency) -> bool:
        async with self._client() as client:
            response = await client.post("/checks", json=dependency.model_dump(mode="json"))
            response.raise_for_status()
        return bool(response.json()["satisfied"])


class HttpExecutionTrigger(_HttpAdapter, ExecutionTriggerPort):
    adapter_type = "http"

    async def trigger(self, job_id: str, version: int, environment: str) -> str:
        async with self._client() as client:
            response = await client.post(
                "/runs",
                json={"job_id": job_id, "version": version, "environment": environment},
            )
            response.raise_for_status()
        return response.json()["run_id"]

    async def cancel(self, run_id: str) -> None:
        async with self._client() as client:
            response = await client.post(f"/runs/{run_id}/cancel")
            response.raise_for_status()
