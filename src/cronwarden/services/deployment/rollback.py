"""Rollback coordinator: revert a definition, leave re-arming to an explicit deploy."""

import logging

from cronwarden.errors.exceptions import ConflictError
from cronwarden.models.deployment import DeploymentRecord
from cronwarden.models.enums import Environment
from cronwarden.models.version import RollbackOutcome
from cronwarden.services.deployment.orchestrator import DeploymentOrchestrator
from cronwarden.services.job_store import JobDefinitionStore

logger = logging.getLogger(__name__)


class RollbackCoordinator:
    def __init__(self, store: JobDefinitionStore, orchestrator: DeploymentOrchestrator):
        self.store = store
        self.orchestrator = orchestrator

    async def rollback_and_redeploy(
        self,
        job_id: str,
        target_version: int,
        environment: Environment | str,
        actor: str,
        base_version: int | None = None,
    ) -> RollbackOutcome:
        """Roll ``job_id`` back to ``target_version`` and retire the replaced head's deployments.

        Nothing is deployed. The returned outcome names the new head version
        and environment to pass to ``redeploy`` (or ``deploy``) once that
        action is separately authorized.
        """
        environment = Environment(environment)
        new_version = await self.store.rollback(job_id, target_version, actor, base_version=base_version)
        superseded = await self.orchestrator.mark_rolled_back(job_id, new_version - 1, actor)
        logger.info(
            "Job %s rolled back to version %d as %d; %d deployments superseded",
            job_id, target_version, new_version, len(superseded),
        )
        return RollbackOutcome(
            job_id=job_id,
            restored_from_version=target_version,
            new_version=new_version,
            environment=environment,
            superseded_deployment_ids=superseded,
        )

    async def redeploy(self, outcome: RollbackOutcome, actor: str) -> DeploymentRecord:
        definition = await self.store.get(outcome.job_id)
        if definition.current_version != outcome.new_version:
            raise ConflictError(
                f"Job '{outcome.job_id}' moved to version {definition.current_version} "
                f"after the rollback to {outcome.new_version}",
                code="ROLLBACK_SUPERSEDED",
            )
        return await self.orchestrator.deploy(
            outcome.job_id, outcome.new_version, outcome.environment, actor
        )
