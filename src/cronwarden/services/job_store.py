"""Job Definition Store: the only writer of job definitions and their history.

The head of each job lives in ``job_definitions``; every superseded version
is archived in ``job_versions``. ``save`` and ``rollback`` swap the head with
a compare-and-swap UPDATE on ``current_version`` and insert the outgoing
head into history in the same transaction, so ``current_version`` is always
``1 + len(history)``.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.db.models.job_definition import JobDefinitionRow, JobVersionRow
from cronwarden.errors.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    VersionNotFoundError,
)
from cronwarden.events.job_events import (
    JOB_CREATED,
    JOB_ROLLED_BACK,
    JOB_SAVED,
    JOB_STATUS_CHANGED,
    JobEventEmitter,
)
from cronwarden.models.enums import LifecycleStatus
from cronwarden.models.job import JobDefinition, JobDefinitionCreate, JobMutation, JobSpec
from cronwarden.models.version import FieldChange, VersionDiff, VersionRecord
from cronwarden.repositories.job_definition_repo import JobDefinitionRepository, JobVersionRepository
from cronwarden.services.id_generator import JOB_PREFIX, generate_id
from cronwarden.services.schedule.expression import from_spec

logger = logging.getLogger(__name__)

S = LifecycleStatus

ALLOWED_TRANSITIONS: dict[LifecycleStatus, set[LifecycleStatus]] = {
    S.DRAFT: {S.APPROVED, S.SCHEDULED, S.ARCHIVED},
    S.APPROVED: {S.SCHEDULED, S.DRAFT, S.ARCHIVED},
    S.SCHEDULED: {S.RUNNING, S.PAUSED, S.FAILED, S.COMPLETED, S.DRAFT, S.ARCHIVED},
    S.RUNNING: {S.SCHEDULED, S.FAILED, S.COMPLETED, S.PAUSED, S.ARCHIVED},
    S.PAUSED: {S.SCHEDULED, S.DRAFT, S.ARCHIVED},
    S.FAILED: {S.SCHEDULED, S.DRAFT, S.ARCHIVED},
    S.COMPLETED: {S.SCHEDULED, S.DRAFT, S.ARCHIVED},
    S.ARCHIVED: set(),
}

# Bookkeeping columns other components may update without a new version
SCHEDULING_FIELDS = {"approval_request_id", "next_fire_at", "deferred_until", "last_fire_at"}


def can_transition(current: LifecycleStatus, target: LifecycleStatus) -> bool:
    if current == S.ARCHIVED:
        return False
    return target == current or target in ALLOWED_TRANSITIONS[current]


def row_to_definition(row: JobDefinitionRow) -> JobDefinition:
    return JobDefinition(
        job_id=row.job_id,
        current_version=row.current_version,
        lifecycle_status=LifecycleStatus(row.lifecycle_status),
        spec=JobSpec.model_validate(row.spec),
        commit_message=row.commit_message,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        version_created_at=row.version_created_at,
        approval_request_id=row.approval_request_id,
        next_fire_at=row.next_fire_at,
        deferred_until=row.deferred_until,
        last_fire_at=row.last_fire_at,
    )


def _version_to_record(row: JobVersionRow) -> VersionRecord:
    return VersionRecord(
        job_id=row.job_id,
        version=row.version,
        snapshot=JobSpec.model_validate(row.snapshot),
        commit_message=row.commit_message,
        author=row.author,
        created_at=row.created_at,
    )


def _head_record(definition: JobDefinition) -> VersionRecord:
    return VersionRecord(
        job_id=definition.job_id,
        version=definition.current_version,
        snapshot=definition.spec,
        commit_message=definition.commit_message,
        author=definition.updated_by,
        created_at=definition.version_created_at,
    )


def _flatten(value: Any, prefix: str = "") -> dict[str, Any]:
    if isinstance(value, dict):
        flat: dict[str, Any] = {}
        for key, item in value.items():
            flat.update(_flatten(item, f"{prefix}.{key}" if prefix else key))
        return flat
    return {prefix: value}


def validate_spec(spec: JobSpec) -> None:
    """Raise InvalidScheduleExpressionError if the schedule does not parse."""
    from_spec(spec.schedule)


class JobDefinitionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], events: JobEventEmitter):
        self.session_factory = session_factory
        self.events = events

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def create(self, draft: JobDefinitionCreate) -> JobDefinition:
        """Persist ``draft`` as version 1 of a new job, in draft status."""
        spec = draft.to_spec()
        validate_spec(spec)

        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            row = await JobDefinitionRepository(session).create(
                job_id=generate_id(JOB_PREFIX),
                name=spec.name,
                current_version=1,
                lifecycle_status=S.DRAFT.value,
                environment=spec.environment.value,
                queue_priority=spec.gating.queue_priority,
                spec=spec.model_dump(mode="json"),
                commit_message=draft.commit_message,
                created_by=draft.author,
                updated_by=draft.author,
                version_created_at=now,
                created_at=now,
                updated_at=now,
            )
            await session.commit()
            definition = row_to_definition(row)

        logger.info("Created job %s (%s)", definition.job_id, spec.name)
        await self.events.emit(
            JOB_CREATED, definition.job_id, draft.author, {"version": 1}, spec=definition.spec
        )
        return definition

    async def get(self, job_id: str) -> JobDefinition:
        async with self.session_factory() as session:
            row = await JobDefinitionRepository(session).get(job_id)
        if row is None:
            raise NotFoundError("Job", job_id)
        return row_to_definition(row)

    async def list_jobs(
        self,
        status: LifecycleStatus | None = None,
        environment: str | None = None,
        tag: str | None = None,
    ) -> list[JobDefinition]:
        async with self.session_factory() as session:
            rows = await JobDefinitionRepository(session).list_filtered(
                status.value if status else None, environment
            )
        definitions = [row_to_definition(r) for r in rows]
        if tag:
            definitions = [d for d in definitions if tag in d.spec.tags]
        return definitions

    async def list_due(self, now: datetime) -> list[JobDefinition]:
        async with self.session_factory() as session:
            rows = await JobDefinitionRepository(session).list_due(now)
        return [row_to_definition(r) for r in rows]

    # ------------------------------------------------------------------
    # Versioned writes
    # ------------------------------------------------------------------

    async def save(
        self,
        job_id: str,
        mutation: JobMutation,
        commit_message: str,
        author: str,
        base_version: int,
    ) -> int:
        """Apply ``mutation`` on top of ``base_version`` and return the new version.

        Raises ConcurrentModificationError if the head moved past
        ``base_version``; the caller should refetch and retry.
        """
        async with self.session_factory() as session:
            row = await self._load_writable(session, job_id)
            if row.current_version != base_version:
                raise ConcurrentModificationError(job_id, base_version, row.current_version)
            head = row_to_definition(row)
            new_spec = mutation.apply(head.spec)
            validate_spec(new_spec)
            new_version = await self._advance_head(session, head, new_spec, commit_message, author)

        logger.info("Saved job %s version %d", job_id, new_version)
        await self.events.emit(
            JOB_SAVED,
            job_id,
            author,
            {
                "version": new_version,
                "commit_message": commit_message,
                "changed_fields": sorted(mutation.model_fields_set),
            },
            spec=new_spec,
        )
        return new_version

    async def rollback(
        self,
        job_id: str,
        target_version: int,
        author: str,
        base_version: int | None = None,
    ) -> int:
        """Copy the snapshot of an archived version into a new head version.

        Only superseded versions (those in ``history``) are valid targets.
        """
        async with self.session_factory() as session:
            row = await self._load_writable(session, job_id)
            base = base_version if base_version is not None else row.current_version
            if row.current_version != base:
                raise ConcurrentModificationError(job_id, base, row.current_version)
            target = await JobVersionRepository(session).get(job_id, target_version)
            if target is None:
                raise VersionNotFoundError(job_id, target_version)
            head = row_to_definition(row)
            snapshot = JobSpec.model_validate(target.snapshot)
            new_version = await self._advance_head(
                session,
                head,
                snapshot,
                f"Rollback to version {target_version}",
                author,
            )

        logger.info("Rolled back job %s to version %d as version %d", job_id, target_version, new_version)
        await self.events.emit(
            JOB_ROLLED_BACK,
            job_id,
            author,
            {"restored_from_version": target_version, "version": new_version},
            spec=snapshot,
        )
        return new_version

    async def _load_writable(self, session: AsyncSession, job_id: str) -> JobDefinitionRow:
        row = await JobDefinitionRepository(session).get(job_id)
        if row is None:
            raise NotFoundError("Job", job_id)
        if row.lifecycle_status == S.ARCHIVED.value:
            raise InvalidTransitionError(job_id, S.ARCHIVED.value, S.DRAFT.value)
        return row

    async def _advance_head(
        self,
        session: AsyncSession,
        head: JobDefinition,
        new_spec: JobSpec,
        commit_message: str,
        author: str,
    ) -> int:
        """Swap in ``new_spec`` as head and archive the outgoing head, atomically."""
        base = head.current_version
        now = datetime.now(timezone.utc)
        swapped = await JobDefinitionRepository(session).swap_head(
            head.job_id,
            base,
            name=new_spec.name,
            environment=new_spec.environment.value,
            queue_priority=new_spec.gating.queue_priority,
            spec=new_spec.model_dump(mode="json"),
            commit_message=commit_message,
            updated_by=author,
            version_created_at=now,
            lifecycle_status=S.DRAFT.value,
            approval_request_id=None,
            next_fire_at=None,
            deferred_until=None,
            updated_at=now,
        )
        if not swapped:
            await session.rollback()
            raise ConcurrentModificationError(head.job_id, base)

        archived = _head_record(head)
        try:
            await JobVersionRepository(session).create(
                job_id=archived.job_id,
                version=archived.version,
                snapshot=archived.snapshot.model_dump(mode="json"),
                commit_message=archived.commit_message,
                author=archived.author,
                created_at=archived.created_at,
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise ConcurrentModificationError(head.job_id, base)
        return base + 1

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def history(self, job_id: str) -> list[VersionRecord]:
        """Superseded versions, oldest first. The head is not included."""
        async with self.session_factory() as session:
            if await JobDefinitionRepository(session).get(job_id) is None:
                raise NotFoundError("Job", job_id)
            rows = await JobVersionRepository(session).list_for_job(job_id)
        return [_version_to_record(r) for r in rows]

    async def get_version(self, job_id: str, version: int) -> VersionRecord:
        async with self.session_factory() as session:
            row = await JobDefinitionRepository(session).get(job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            if version == row.current_version:
                return _head_record(row_to_definition(row))
            archived = await JobVersionRepository(session).get(job_id, version)
        if archived is None:
            raise VersionNotFoundError(job_id, version)
        return _version_to_record(archived)

    async def diff(self, job_id: str, from_version: int, to_version: int) -> VersionDiff:
        """Field-level changes between two versions, as dotted paths."""
        old = _flatten((await self.get_version(job_id, from_version)).snapshot.model_dump(mode="json"))
        new = _flatten((await self.get_version(job_id, to_version)).snapshot.model_dump(mode="json"))
        changes = [
            FieldChange(path=path, old=old.get(path), new=new.get(path))
            for path in sorted(old.keys() | new.keys())
            if old.get(path) != new.get(path)
        ]
        return VersionDiff(
            job_id=job_id,
            from_version=from_version,
            to_version=to_version,
            changes=changes,
        )

    # ------------------------------------------------------------------
    # Lifecycle and scheduling bookkeeping (not versioned)
    # ------------------------------------------------------------------

    async def set_status(
        self,
        job_id: str,
        target: LifecycleStatus,
        actor: str,
        reason: str | None = None,
        expected_version: int | None = None,
        **fields: Any,
    ) -> JobDefinition:
        """Move a job to ``target``, optionally updating scheduling fields in the same write.

        ``expected_version`` pins the head: if the definition was saved in the
        meantime the transition is refused with ConcurrentModificationError.
        """
        unknown = set(fields) - SCHEDULING_FIELDS
        if unknown:
            raise ValueError(f"Not a scheduling field: {sorted(unknown)}")

        async with self.session_factory() as session:
            repo = JobDefinitionRepository(session)
            row = await repo.get(job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            if expected_version is not None and row.current_version != expected_version:
                raise ConcurrentModificationError(job_id, expected_version, row.current_version)
            current = LifecycleStatus(row.lifecycle_status)
            if not can_transition(current, target):
                raise InvalidTransitionError(job_id, current.value, target.value)
            if target == S.ARCHIVED:
                fields = {**fields, "next_fire_at": None, "deferred_until": None}
            if expected_version is None:
                await repo.update(row, lifecycle_status=target.value, **fields)
            else:
                # The write itself is conditional on the head, so a save that
                # commits after the read above cannot be armed by this call
                changed = await repo.update_where(
                    JobDefinitionRow.job_id == job_id,
                    JobDefinitionRow.current_version == expected_version,
                    lifecycle_status=target.value,
                    **fields,
                )
                await session.refresh(row)
                if not changed:
                    raise ConcurrentModificationError(job_id, expected_version, row.current_version)
            await session.commit()
            definition = row_to_definition(row)

        if current != target:
            logger.info("Job %s %s -> %s by %s", job_id, current.value, target.value, actor)
            await self.events.emit(
                JOB_STATUS_CHANGED,
                job_id,
                actor,
                {"from": current.value, "to": target.value, "reason": reason},
                spec=definition.spec,
            )
        return definition

    async def update_scheduling(self, job_id: str, **fields: Any) -> JobDefinition:
        """Update bookkeeping columns (next fire, deferral, approval id) only."""
        unknown = set(fields) - SCHEDULING_FIELDS
        if unknown:
            raise ValueError(f"Not a scheduling field: {sorted(unknown)}")
        async with self.session_factory() as session:
            repo = JobDefinitionRepository(session)
            row = await repo.get(job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            await repo.update(row, **fields)
            await session.commit()
            return row_to_definition(row)
