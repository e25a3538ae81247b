"""Wire the core services together over one session factory and a set of ports."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.config import Settings
from cronwarden.events.job_events import JobEventEmitter
from cronwarden.integrations.service import Collaborators
from cronwarden.services.deployment.orchestrator import DeploymentOrchestrator
from cronwarden.services.deployment.rollback import RollbackCoordinator
from cronwarden.services.gating.evaluator import GatingEvaluator
from cronwarden.services.job_store import JobDefinitionStore
from cronwarden.services.schedule.planner import SchedulePlanner


@dataclass
class JobEngine:
    store: JobDefinitionStore
    planner: SchedulePlanner
    evaluator: GatingEvaluator
    orchestrator: DeploymentOrchestrator
    rollback: RollbackCoordinator
    events: JobEventEmitter
    collaborators: Collaborators
    max_triggers_per_tick: int = 50


def build_engine(
    session_factory: async_sessionmaker[AsyncSession],
    collaborators: Collaborators,
    settings: Settings,
) -> JobEngine:
    events = JobEventEmitter(
        collaborators.notifier, collaborators.audit, settings.collaborator_timeout_seconds
    )
    store = JobDefinitionStore(session_factory, events)
    planner = SchedulePlanner(collaborators.calendars, settings.schedule_search_horizon_days)
    evaluator = GatingEvaluator(
        store,
        session_factory,
        collaborators.approvals,
        collaborators.oracle,
        retry_seconds=settings.gating_retry_seconds,
        timeout_seconds=settings.collaborator_timeout_seconds,
    )
    orchestrator = DeploymentOrchestrator(
        store,
        session_factory,
        collaborators.approvals,
        collaborators.trigger,
        planner,
        events,
        timeout_seconds=settings.collaborator_timeout_seconds,
        recovery_after_seconds=settings.deployment_recovery_after_seconds,
        default_approvers=settings.default_approvers,
    )
    return JobEngine(
        store=store,
        planner=planner,
        evaluator=evaluator,
        orchestrator=orchestrator,
        rollback=RollbackCoordinator(store, orchestrator),
        events=events,
        collaborators=collaborators,
        max_triggers_per_tick=settings.max_triggers_per_tick,
    )
