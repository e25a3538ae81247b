"""Gating evaluator: may this job fire at this instant?

Checks run in a fixed order (lifecycle status, manual approval, concurrency
policy, data dependencies) and the first that does not pass decides. Any
collaborator failure or timeout yields Defer, never Deny, so a transient
outage cannot permanently block a job.
"""

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.errors.exceptions import CollaboratorUnavailableError, DependencyUnresolvedError
from cronwarden.integrations.guard import guarded_call
from cronwarden.integrations.ports import ApprovalWorkflowPort, DataDependencyOraclePort
from cronwarden.models.decision import Allow, Decision, Defer, Deny
from cronwarden.models.enums import ApprovalStatus, ConcurrencyPolicy, LifecycleStatus
from cronwarden.models.job import DataDependency, JobDefinition
from cronwarden.repositories.deployment_repo import JobRunRepository
from cronwarden.services.job_store import JobDefinitionStore
from cronwarden.services.schedule.fire_times import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Candidate:
    """A job competing for a fire slot in one scheduling tick."""

    job_id: str
    queue_priority: int
    fire_time: datetime


def order_by_priority(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Highest queue_priority first; ties broken by job_id ascending."""
    return sorted(candidates, key=lambda c: (-c.queue_priority, c.job_id))


class GatingEvaluator:
    def __init__(
        self,
        store: JobDefinitionStore,
        session_factory: async_sessionmaker[AsyncSession],
        approvals: ApprovalWorkflowPort,
        oracle: DataDependencyOraclePort,
        retry_seconds: int = 60,
        timeout_seconds: float = 5.0,
    ):
        self.store = store
        self.session_factory = session_factory
        self.approvals = approvals
        self.oracle = oracle
        self.retry_seconds = retry_seconds
        self.timeout_seconds = timeout_seconds

    async def evaluate(self, job_id: str, proposed_fire_time: datetime) -> Decision:
        definition = await self.store.get(job_id)
        return await self.evaluate_definition(definition, proposed_fire_time)

    async def evaluate_definition(self, definition: JobDefinition, proposed_fire_time: datetime) -> Decision:
        earliest = max(datetime.now(timezone.utc), as_utc(proposed_fire_time))
        retry_after = earliest + timedelta(seconds=self.retry_seconds)
        try:
            return await self._evaluate(definition, retry_after)
        except CollaboratorUnavailableError as exc:
            logger.warning("Deferring %s: %s", definition.job_id, exc.message)
            return Defer(reason=exc.message, retry_after=retry_after)
        except DependencyUnresolvedError as exc:
            return Defer(reason=exc.message, retry_after=retry_after)

    async def _evaluate(self, definition: JobDefinition, retry_after: datetime) -> Decision:
        job_id = definition.job_id
        gating = definition.spec.gating

        if definition.lifecycle_status != LifecycleStatus.SCHEDULED:
            return Deny(reason=f"not scheduled (status is {definition.lifecycle_status.value})")

        if gating.manual_approval_required:
            request_id = definition.approval_request_id
            if request_id is None:
                return Defer(reason="manual approval required but not requested", retry_after=retry_after)
            status = await self._call("approval workflow", self.approvals.get_status(request_id))
            if status != ApprovalStatus.APPROVED:
                return Defer(reason=f"approval {request_id} is {status.value}", retry_after=retry_after)

        cancel_run_ids: tuple[str, ...] = ()
        policy = definition.spec.execution.concurrency_policy
        if policy != ConcurrencyPolicy.ALLOW:
            async with self.session_factory() as session:
                running = await JobRunRepository(session).list_running(job_id)
            if running and policy == ConcurrencyPolicy.FORBID:
                ids = ", ".join(r.run_id for r in running)
                return Deny(reason=f"concurrency policy forbid: run {ids} still running")
            cancel_run_ids = tuple(r.run_id for r in running)

        await self._check_dependencies(gating.data_dependencies)
        return Allow(cancel_run_ids=cancel_run_ids)

    async def _check_dependencies(self, dependencies: list[DataDependency]) -> None:
        """Raise DependencyUnresolvedError unless every dependency holds."""
        if not dependencies:
            return
        results = await asyncio.gather(
            *(self._call("data oracle", self.oracle.check(d)) for d in dependencies),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        unmet = [d.describe() for d, holds in zip(dependencies, results) if not holds]
        if unmet:
            raise DependencyUnresolvedError(unmet)

    async def _call(self, collaborator: str, call: Awaitable[T]) -> T:
        return await guarded_call(collaborator, call, self.timeout_seconds)
