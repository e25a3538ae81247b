"""Deployment orchestrator: promotes a job's head version into an environment.

Sole writer of deployment and run records. A deployment moves through:

    in_progress ──(armed)──> initiated ──(first fire)──> completed
         │                       └──(rollback)──> rolled_back
         └──(rejected / cancelled / interrupted)──> failed

Jobs that require manual approval park in ``in_progress`` with the approval
request id until the workflow decides; calling ``deploy`` again (or the
scheduler's ``resume_pending_approvals``) picks the deployment back up.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.db.models.deployment import DeploymentRow, JobRunRow
from cronwarden.errors.exceptions import (
    AlreadyInProgressError,
    ApprovalRejectedError,
    CollaboratorUnavailableError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    VersionNotHeadError,
)
from cronwarden.events.job_events import (
    DEPLOYMENT_CANCELLED,
    DEPLOYMENT_FAILED,
    DEPLOYMENT_INITIATED,
    DEPLOYMENT_REQUESTED_APPROVAL,
    DEPLOYMENT_ROLLED_BACK,
    RUN_CANCELLED,
    RUN_FINISHED,
    RUN_TRIGGER_FAILED,
    RUN_TRIGGERED,
    JobEventEmitter,
)
from cronwarden.integrations.guard import guarded_call
from cronwarden.integrations.ports import ApprovalWorkflowPort, ExecutionTriggerPort
from cronwarden.models.decision import Allow
from cronwarden.models.deployment import DeploymentRecord, JobRun, RunStatusReport
from cronwarden.models.enums import (
    ApprovalStatus,
    DeploymentStatus,
    Environment,
    LifecycleStatus,
    RunStatus,
)
from cronwarden.models.job import JobDefinition
from cronwarden.repositories.deployment_repo import DeploymentRepository, JobRunRepository
from cronwarden.services.id_generator import DEPLOYMENT_PREFIX, generate_id
from cronwarden.services.job_store import JobDefinitionStore
from cronwarden.services.schedule.planner import SchedulePlanner

logger = logging.getLogger(__name__)

LIVE_STATUSES = {DeploymentStatus.INITIATED, DeploymentStatus.COMPLETED}


def deployment_to_record(row: DeploymentRow) -> DeploymentRecord:
    return DeploymentRecord(
        deployment_id=row.deployment_id,
        job_id=row.job_id,
        version=row.version,
        environment=Environment(row.environment),
        status=DeploymentStatus(row.status),
        actor=row.actor,
        approval_request_id=row.approval_request_id,
        reason=row.reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def run_to_model(row: JobRunRow) -> JobRun:
    return JobRun(
        run_id=row.run_id,
        job_id=row.job_id,
        version=row.version,
        environment=Environment(row.environment),
        status=RunStatus(row.status),
        fire_time=row.fire_time,
        started_at=row.started_at,
        finished_at=row.finished_at,
        detail=row.detail,
    )


class DeploymentOrchestrator:
    def __init__(
        self,
        store: JobDefinitionStore,
        session_factory: async_sessionmaker[AsyncSession],
        approvals: ApprovalWorkflowPort,
        trigger: ExecutionTriggerPort,
        planner: SchedulePlanner,
        events: JobEventEmitter,
        timeout_seconds: float = 5.0,
        recovery_after_seconds: int = 900,
        default_approvers: list[str] | None = None,
    ):
        self.store = store
        self.session_factory = session_factory
        self.approvals = approvals
        self.trigger = trigger
        self.planner = planner
        self.events = events
        self.timeout_seconds = timeout_seconds
        self.recovery_after_seconds = recovery_after_seconds
        self.default_approvers = list(default_approvers or [])
        # (job_id, environment) pairs with a deploy call executing in this process
        self._active: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(
        self,
        job_id: str,
        version: int,
        environment: Environment | str,
        actor: str,
    ) -> DeploymentRecord:
        """Promote ``job_id@version`` into ``environment``.

        ``version`` must be the current head. Calls for the same
        (job, environment) pair are serialized: while one is executing, or
        while an in-progress record exists, others fail with
        AlreadyInProgressError. Re-invoking for a deployment parked on
        approval resumes it instead.
        """
        environment = Environment(environment)
        key = (job_id, environment.value)
        if key in self._active:
            raise AlreadyInProgressError(job_id, environment.value)
        self._active.add(key)
        try:
            return await self._deploy(job_id, version, environment, actor)
        finally:
            self._active.discard(key)

    async def _deploy(
        self,
        job_id: str,
        version: int,
        environment: Environment,
        actor: str,
    ) -> DeploymentRecord:
        definition = await self.store.get(job_id)
        if definition.lifecycle_status == LifecycleStatus.ARCHIVED:
            raise InvalidTransitionError(
                job_id, LifecycleStatus.ARCHIVED.value, LifecycleStatus.SCHEDULED.value
            )
        if version != definition.current_version:
            raise VersionNotHeadError(job_id, version, definition.current_version)

        async with self.session_factory() as session:
            pending = await DeploymentRepository(session).get_in_progress(job_id, environment.value)

        if pending is not None:
            if pending.approval_request_id is None:
                raise AlreadyInProgressError(job_id, environment.value)
            if pending.version == version:
                return await self._resume(definition, deployment_to_record(pending), actor)
            await self._finish_deployment(
                pending.deployment_id,
                DeploymentStatus.FAILED,
                actor,
                reason=f"superseded by version {version}",
            )

        if definition.spec.gating.manual_approval_required:
            if not await self._head_already_approved(definition):
                return await self._request_approval(definition, environment, actor)

        record = await self._open_deployment(definition, environment, actor)
        return await self._arm(definition, record, actor)

    async def _head_already_approved(self, definition: JobDefinition) -> bool:
        """True when this head's recorded approval request was approved earlier."""
        if definition.approval_request_id is None:
            return False
        if definition.lifecycle_status == LifecycleStatus.DRAFT:
            return False
        status = await self._call(
            "approval workflow", self.approvals.get_status(definition.approval_request_id)
        )
        return status == ApprovalStatus.APPROVED

    async def _request_approval(
        self,
        definition: JobDefinition,
        environment: Environment,
        actor: str,
    ) -> DeploymentRecord:
        job_id = definition.job_id
        approvers = definition.spec.gating.approvers or self.default_approvers
        message = (
            f"Deploy {definition.spec.name} ({job_id}) version {definition.current_version} "
            f"to {environment.value}, requested by {actor}"
        )
        # Claim the (job, environment) pair before anything reaches the workflow
        record = await self._open_deployment(definition, environment, actor)
        try:
            request_id = await self._call(
                "approval workflow", self.approvals.request_approval(job_id, approvers, message)
            )
        except Exception as exc:
            await self._finish_deployment(
                record.deployment_id,
                DeploymentStatus.FAILED,
                actor,
                reason=getattr(exc, "message", None) or str(exc),
            )
            raise
        record = await self._attach_approval(record.deployment_id, request_id)
        await self.store.update_scheduling(job_id, approval_request_id=request_id)

        logger.info("Deployment %s of %s awaiting approval %s", record.deployment_id, job_id, request_id)
        await self.events.emit(
            DEPLOYMENT_REQUESTED_APPROVAL,
            job_id,
            actor,
            {
                "deployment_id": record.deployment_id,
                "approval_request_id": request_id,
                "version": record.version,
                "environment": environment.value,
            },
            spec=definition.spec,
        )
        return record

    async def _resume(
        self,
        definition: JobDefinition,
        record: DeploymentRecord,
        actor: str,
    ) -> DeploymentRecord:
        """Continue a deployment parked on approval."""
        status = await self._call(
            "approval workflow", self.approvals.get_status(record.approval_request_id)
        )
        if status == ApprovalStatus.PENDING:
            return record

        if status == ApprovalStatus.REJECTED:
            await self._finish_deployment(
                record.deployment_id, DeploymentStatus.FAILED, actor, reason="approval rejected"
            )
            if definition.lifecycle_status == LifecycleStatus.APPROVED:
                await self.store.set_status(
                    definition.job_id,
                    LifecycleStatus.DRAFT,
                    actor,
                    reason="approval rejected",
                    approval_request_id=None,
                )
            else:
                await self.store.update_scheduling(definition.job_id, approval_request_id=None)
            raise ApprovalRejectedError(
                definition.job_id, record.approval_request_id, record.deployment_id
            )

        if definition.lifecycle_status == LifecycleStatus.DRAFT:
            definition = await self.store.set_status(
                definition.job_id,
                LifecycleStatus.APPROVED,
                actor,
                reason=f"approval {record.approval_request_id} approved",
                expected_version=record.version,
                approval_request_id=record.approval_request_id,
            )
        return await self._arm(definition, record, actor)

    async def _attach_approval(self, deployment_id: str, request_id: str) -> DeploymentRecord:
        async with self.session_factory() as session:
            repo = DeploymentRepository(session)
            row = await repo.get(deployment_id)
            if row is None:
                raise NotFoundError("Deployment", deployment_id)
            await repo.update(row, approval_request_id=request_id)
            await session.commit()
            return deployment_to_record(row)

    async def _open_deployment(
        self,
        definition: JobDefinition,
        environment: Environment,
        actor: str,
    ) -> DeploymentRecord:
        async with self.session_factory() as session:
            repo = DeploymentRepository(session)
            if await repo.get_in_progress(definition.job_id, environment.value) is not None:
                raise AlreadyInProgressError(definition.job_id, environment.value)
            row = await repo.create(
                deployment_id=generate_id(DEPLOYMENT_PREFIX),
                job_id=definition.job_id,
                version=definition.current_version,
                environment=environment.value,
                status=DeploymentStatus.IN_PROGRESS.value,
                actor=actor,
            )
            await session.commit()
            return deployment_to_record(row)

    async def _arm(
        self,
        definition: JobDefinition,
        record: DeploymentRecord,
        actor: str,
    ) -> DeploymentRecord:
        """Mark the deployment initiated and schedule the job's next fire time."""
        try:
            next_fire = await self.planner.next_fire(
                definition.spec.schedule, datetime.now(timezone.utc)
            )
            await self.store.set_status(
                definition.job_id,
                LifecycleStatus.SCHEDULED,
                actor,
                reason=f"deployed to {record.environment.value}",
                expected_version=record.version,
                next_fire_at=next_fire,
                deferred_until=None,
            )
        except Exception as exc:
            await self._finish_deployment(
                record.deployment_id,
                DeploymentStatus.FAILED,
                actor,
                reason=getattr(exc, "message", None) or str(exc),
            )
            raise

        armed = await self._finish_deployment(record.deployment_id, DeploymentStatus.INITIATED, actor)
        logger.info(
            "Deployed %s@%d to %s, next fire %s",
            definition.job_id, record.version, record.environment.value, next_fire.isoformat(),
        )
        return armed

    async def _finish_deployment(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        actor: str,
        reason: str | None = None,
    ) -> DeploymentRecord:
        async with self.session_factory() as session:
            repo = DeploymentRepository(session)
            row = await repo.get(deployment_id)
            if row is None:
                raise NotFoundError("Deployment", deployment_id)
            await repo.update(row, status=status.value, reason=reason)
            await session.commit()
            record = deployment_to_record(row)

        event_type = {
            DeploymentStatus.INITIATED: DEPLOYMENT_INITIATED,
            DeploymentStatus.FAILED: DEPLOYMENT_FAILED,
            DeploymentStatus.ROLLED_BACK: DEPLOYMENT_ROLLED_BACK,
        }.get(status)
        if event_type is not None:
            head = await self.store.get(record.job_id)
            await self.events.emit(
                event_type,
                record.job_id,
                actor,
                {
                    "deployment_id": deployment_id,
                    "version": record.version,
                    "environment": record.environment.value,
                    "reason": reason,
                },
                spec=head.spec,
            )
        return record

    async def _call(self, collaborator: str, call):
        return await guarded_call(collaborator, call, self.timeout_seconds)

    # ------------------------------------------------------------------
    # Deployment housekeeping
    # ------------------------------------------------------------------

    async def resume_pending_approvals(self, actor: str = "scheduler") -> list[DeploymentRecord]:
        """Re-invoke ``deploy`` for every deployment parked on approval.

        Rejections, collaborator outages and concurrent deploys are logged;
        the remaining deployments are still processed.
        """
        async with self.session_factory() as session:
            parked = [deployment_to_record(r) for r in await DeploymentRepository(session).list_awaiting_approval()]

        resumed = []
        for record in parked:
            try:
                result = await self.deploy(record.job_id, record.version, record.environment, actor)
            except VersionNotHeadError:
                await self._finish_deployment(
                    record.deployment_id,
                    DeploymentStatus.FAILED,
                    actor,
                    reason="superseded by a newer version",
                )
                continue
            except (ApprovalRejectedError, AlreadyInProgressError, CollaboratorUnavailableError) as exc:
                logger.info("Deployment %s not resumed: %s", record.deployment_id, exc.message)
                continue
            if result.status != DeploymentStatus.IN_PROGRESS:
                resumed.append(result)
        return resumed

    async def cancel_deployment(self, deployment_id: str, actor: str) -> DeploymentRecord:
        """Abandon an in-progress deployment (typically one waiting on approval)."""
        async with self.session_factory() as session:
            row = await DeploymentRepository(session).get(deployment_id)
        if row is None:
            raise NotFoundError("Deployment", deployment_id)
        if row.status != DeploymentStatus.IN_PROGRESS.value:
            raise ConflictError(
                f"Deployment '{deployment_id}' is {row.status} and cannot be cancelled",
                code="NOT_CANCELLABLE",
            )
        record = await self._finish_deployment(
            deployment_id, DeploymentStatus.FAILED, actor, reason=f"cancelled by {actor}"
        )
        if record.approval_request_id is not None:
            definition = await self.store.get(record.job_id)
            if definition.approval_request_id == record.approval_request_id and definition.lifecycle_status in (
                LifecycleStatus.DRAFT,
                LifecycleStatus.APPROVED,
            ):
                await self.store.set_status(
                    record.job_id,
                    LifecycleStatus.DRAFT,
                    actor,
                    reason="deployment cancelled",
                    approval_request_id=None,
                )
        head = await self.store.get(record.job_id)
        await self.events.emit(
            DEPLOYMENT_CANCELLED, record.job_id, actor, {"deployment_id": deployment_id}, spec=head.spec
        )
        return record

    async def get_deployment(self, deployment_id: str) -> DeploymentRecord:
        async with self.session_factory() as session:
            row = await DeploymentRepository(session).get(deployment_id)
        if row is None:
            raise NotFoundError("Deployment", deployment_id)
        return deployment_to_record(row)

    async def list_deployments(
        self,
        job_id: str,
        environment: Environment | str | None = None,
    ) -> list[DeploymentRecord]:
        env = Environment(environment).value if environment else None
        async with self.session_factory() as session:
            rows = await DeploymentRepository(session).list_for_job(job_id, env)
        return [deployment_to_record(r) for r in rows]

    async def armed_environments(self, definition: JobDefinition) -> list[Environment]:
        """Environments whose latest deployment of the head version is live."""
        async with self.session_factory() as session:
            rows = await DeploymentRepository(session).list_for_job(definition.job_id)
        latest: dict[str, DeploymentRow] = {}
        for row in rows:
            if row.version == definition.current_version and row.environment not in latest:
                latest[row.environment] = row
        return sorted(
            Environment(env)
            for env, row in latest.items()
            if DeploymentStatus(row.status) in LIVE_STATUSES
        )

    async def mark_rolled_back(self, job_id: str, version: int, actor: str) -> list[str]:
        """Flag live deployments of ``version`` as rolled back. Returns their ids."""
        async with self.session_factory() as session:
            rows = await DeploymentRepository(session).list_live(job_id, version)
        ids = []
        for row in rows:
            await self._finish_deployment(
                row.deployment_id,
                DeploymentStatus.ROLLED_BACK,
                actor,
                reason=f"version {version} rolled back",
            )
            ids.append(row.deployment_id)
        return ids

    async def recover_interrupted(self, now: datetime | None = None) -> list[str]:
        """Fail in-progress deployments abandoned mid-deploy (e.g. by a crash).

        Deployments parked on approval are left alone; they resume normally.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.recovery_after_seconds)
        async with self.session_factory() as session:
            stale = await DeploymentRepository(session).list_stale_in_progress(cutoff)
            stale_ids = [r.deployment_id for r in stale]
        for deployment_id in stale_ids:
            await self._finish_deployment(
                deployment_id, DeploymentStatus.FAILED, "recovery", reason="interrupted"
            )
        if stale_ids:
            logger.warning("Recovered %d interrupted deployments", len(stale_ids))
        return stale_ids

    async def resume_job(self, job_id: str, actor: str) -> JobDefinition:
        """Return a paused (or finished) job to scheduled and re-arm its next fire time."""
        definition = await self.store.get(job_id)
        if not await self.armed_environments(definition):
            raise ConflictError(
                f"Job '{job_id}' has no live deployment of version {definition.current_version}",
                code="NOT_DEPLOYED",
            )
        next_fire = await self.planner.next_fire(definition.spec.schedule, datetime.now(timezone.utc))
        return await self.store.set_status(
            job_id,
            LifecycleStatus.SCHEDULED,
            actor,
            reason="resumed",
            expected_version=definition.current_version,
            next_fire_at=next_fire,
            deferred_until=None,
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def fire(
        self,
        definition: JobDefinition,
        fire_time: datetime,
        decision: Allow,
        actor: str = "scheduler",
    ) -> list[JobRun]:
        """Trigger one run per armed environment.

        Runs listed in ``decision.cancel_run_ids`` (replace policy) are
        cancelled first. The first fire completes the head's initiated
        deployments.
        """
        environments = await self.armed_environments(definition)
        if not environments:
            logger.warning("Job %s is scheduled but has no live deployment", definition.job_id)
            return []

        for run_id in decision.cancel_run_ids:
            await self._call("execution trigger", self.trigger.cancel(run_id))
            await self._close_run(run_id, RunStatus.CANCELLED, actor, "replaced by a newer run")
            await self.events.emit(
                RUN_CANCELLED, definition.job_id, actor, {"run_id": run_id}, spec=definition.spec
            )

        runs = []
        failures: dict[str, str] = {}
        for environment in environments:
            async with self.session_factory() as session:
                existing = await JobRunRepository(session).get_for_occurrence(
                    definition.job_id, environment.value, fire_time
                )
            if existing is not None:
                logger.info(
                    "Occurrence %s of %s already ran in %s as %s",
                    fire_time.isoformat(), definition.job_id, environment.value, existing.run_id,
                )
                continue
            try:
                run_id = await self._call(
                    "execution trigger",
                    self.trigger.trigger(definition.job_id, definition.current_version, environment.value),
                )
            except CollaboratorUnavailableError as exc:
                logger.warning(
                    "Trigger of %s in %s failed: %s", definition.job_id, environment.value, exc.message
                )
                failures[environment.value] = exc.cause
                await self.events.emit(
                    RUN_TRIGGER_FAILED,
                    definition.job_id,
                    actor,
                    {
                        "environment": environment.value,
                        "fire_time": fire_time.isoformat(),
                        "error": exc.message,
                    },
                    spec=definition.spec,
                )
                continue
            now = datetime.now(timezone.utc)
            async with self.session_factory() as session:
                row = await JobRunRepository(session).create(
                    run_id=run_id,
                    job_id=definition.job_id,
                    version=definition.current_version,
                    environment=environment.value,
                    status=RunStatus.RUNNING.value,
                    fire_time=fire_time,
                    started_at=now,
                )
                await session.commit()
                runs.append(run_to_model(row))
            await self.events.emit(
                RUN_TRIGGERED,
                definition.job_id,
                actor,
                {"run_id": run_id, "environment": environment.value, "fire_time": fire_time.isoformat()},
                spec=definition.spec,
            )

        if failures and not runs:
            # Nothing started: the whole occurrence is retried after a deferral
            raise CollaboratorUnavailableError(
                "execution trigger",
                "; ".join(f"{env}: {message}" for env, message in failures.items()),
            )

        async with self.session_factory() as session:
            repo = DeploymentRepository(session)
            for row in await repo.list_live(definition.job_id, definition.current_version):
                if row.status == DeploymentStatus.INITIATED.value:
                    await repo.update(row, status=DeploymentStatus.COMPLETED.value)
            await session.commit()
        return runs

    async def report_run(self, run_id: str, report: RunStatusReport, actor: str) -> JobRun:
        """Record a status reported by the execution system for one run."""
        async with self.session_factory() as session:
            row = await JobRunRepository(session).get(run_id)
        if row is None:
            raise NotFoundError("Run", run_id)
        if row.status != RunStatus.RUNNING.value:
            raise ConflictError(f"Run '{run_id}' already finished as {row.status}", code="RUN_FINISHED")
        run = await self._close_run(run_id, report.status, actor, report.detail)
        if report.status != RunStatus.RUNNING:
            # Routing follows the version that actually ran
            ran = await self.store.get_version(run.job_id, run.version)
            await self.events.emit(
                RUN_FINISHED,
                run.job_id,
                actor,
                {"run_id": run_id, "status": report.status.value, "detail": report.detail},
                spec=ran.snapshot,
            )
        return run

    async def _close_run(self, run_id: str, status: RunStatus, actor: str, detail: str | None) -> JobRun:
        async with self.session_factory() as session:
            repo = JobRunRepository(session)
            row = await repo.get(run_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            finished_at = None if status == RunStatus.RUNNING else datetime.now(timezone.utc)
            await repo.update(row, status=status.value, finished_at=finished_at, detail=detail)
            await session.commit()
            return run_to_model(row)

    async def list_runs(self, job_id: str, limit: int = 50) -> list[JobRun]:
        async with self.session_factory() as session:
            rows = await JobRunRepository(session).list_for_job(job_id, limit)
        return [run_to_model(r) for r in rows]
