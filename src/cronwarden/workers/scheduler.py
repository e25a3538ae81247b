"""Background scheduler: fire due jobs through the gating evaluator."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from cronwarden.errors.exceptions import CollaboratorUnavailableError, CronWardenError
from cronwarden.events.job_events import OCCURRENCE_SKIPPED
from cronwarden.logging_config import bind_job_context, clear_request_context
from cronwarden.models.decision import Allow, Defer, Deny
from cronwarden.models.job import JobDefinition
from cronwarden.services.engine import JobEngine
from cronwarden.services.gating.evaluator import Candidate, order_by_priority

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "scheduler"


async def _advance(engine: JobEngine, definition: JobDefinition, after: datetime, **fields) -> None:
    """Move ``next_fire_at`` past ``after``; an unsatisfiable schedule disarms the job."""
    try:
        next_fire = await engine.planner.next_fire(definition.spec.schedule, after)
    except CronWardenError as exc:
        logger.warning("Job %s has no further fire time: %s", definition.job_id, exc.message)
        next_fire = None
    await engine.store.update_scheduling(
        definition.job_id, next_fire_at=next_fire, deferred_until=None, **fields
    )


async def schedule_due_jobs(engine: JobEngine, now: datetime | None = None, redis=None) -> dict:
    """Run one scheduling tick. Returns counts per outcome."""
    now = now or datetime.now(timezone.utc)
    summary = {"resumed": 0, "fired": 0, "skipped": 0, "deferred": 0, "queued": 0}

    summary["resumed"] = len(await engine.orchestrator.resume_pending_approvals(SCHEDULER_ACTOR))

    due = await engine.store.list_due(now)
    if not due:
        return summary

    # Each job's gating runs independently; a slow collaborator only delays its own job.
    decisions = await asyncio.gather(
        *(engine.evaluator.evaluate_definition(d, d.next_fire_at) for d in due)
    )

    allowed: dict[str, tuple[JobDefinition, Allow]] = {}
    for definition, decision in zip(due, decisions):
        if isinstance(decision, Deny):
            logger.info("Skipping %s at %s: %s", definition.job_id, definition.next_fire_at, decision.reason)
            await engine.events.emit(
                OCCURRENCE_SKIPPED,
                definition.job_id,
                SCHEDULER_ACTOR,
                {"fire_time": definition.next_fire_at.isoformat(), "reason": decision.reason},
                spec=definition.spec,
            )
            await _advance(engine, definition, max(now, definition.next_fire_at))
            summary["skipped"] += 1
        elif isinstance(decision, Defer):
            logger.info("Deferring %s until %s: %s", definition.job_id, decision.retry_after, decision.reason)
            await engine.store.update_scheduling(definition.job_id, deferred_until=decision.retry_after)
            summary["deferred"] += 1
        else:
            allowed[definition.job_id] = (definition, decision)

    candidates = order_by_priority(
        Candidate(d.job_id, d.spec.gating.queue_priority, d.next_fire_at) for d, _ in allowed.values()
    )
    for position, candidate in enumerate(candidates):
        if position >= engine.max_triggers_per_tick:
            # Still due; picked up again on the next tick.
            summary["queued"] += 1
            continue

        definition, decision = allowed[candidate.job_id]
        bind_job_context(definition.job_id, candidate.fire_time.isoformat())
        try:
            # Distributed lock via Redis SET NX so two instances never fire the same occurrence
            if redis:
                lock_key = f"cronwarden:fire:{definition.job_id}:{candidate.fire_time.isoformat()}"
                locked = await redis.set(lock_key, "1", nx=True, ex=3600)
                if not locked:
                    logger.debug("Occurrence %s already claimed by another instance", lock_key)
                    continue

            await engine.orchestrator.fire(definition, candidate.fire_time, decision, SCHEDULER_ACTOR)
            await _advance(
                engine,
                definition,
                max(now, candidate.fire_time),
                last_fire_at=candidate.fire_time,
            )
            summary["fired"] += 1
        except CollaboratorUnavailableError as exc:
            retry_after = now + timedelta(seconds=engine.evaluator.retry_seconds)
            logger.warning("Deferring %s until %s: %s", definition.job_id, retry_after, exc.message)
            await engine.store.update_scheduling(definition.job_id, deferred_until=retry_after)
            summary["deferred"] += 1
        except Exception as exc:
            logger.exception("Failed to fire %s: %s", definition.job_id, exc)
        finally:
            clear_request_context()

    return summary


async def run_scheduler(app) -> None:
    """Background task that runs a scheduling tick every poll interval."""
    from cronwarden.config import settings

    interval = settings.scheduler_poll_interval_seconds
    logger.info("Job scheduler started (poll_interval=%ds)", interval)

    while True:
        try:
            await asyncio.sleep(interval)

            engine = getattr(app.state, "engine", None)
            redis = getattr(app.state, "redis", None)

            if not engine:
                continue

            summary = await schedule_due_jobs(engine, redis=redis)
            if summary["fired"] or summary["deferred"] or summary["skipped"]:
                logger.info("Scheduler tick: %s", summary)

        except asyncio.CancelledError:
            logger.info("Job scheduler stopped")
            break
        except Exception as exc:
            logger.exception("Scheduler error: %s", exc)
            # Continue running despite errors
