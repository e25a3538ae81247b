"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cronwarden.config import settings
from cronwarden.db.engine import create_db_engine, create_session_factory
from cronwarden.logging_config import configure_logging

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    db_url = settings.effective_database_url
    engine = create_db_engine(db_url)

    # Auto-create tables for SQLite (local dev, no Alembic migrations)
    if db_url.startswith("sqlite"):
        from cronwarden.db.base import Base
        import cronwarden.db.models  # noqa: F401 - register all ORM models

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite tables created (local mode)")

    session_factory = create_session_factory(engine)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory

    from cronwarden.integrations.service import build_collaborators
    from cronwarden.services.engine import build_engine

    app.state.engine = build_engine(
        session_factory, build_collaborators(settings, session_factory), settings
    )

    # Finish or discard deployments a previous process abandoned mid-flight
    recovered = await app.state.engine.orchestrator.recover_interrupted()
    if recovered:
        logger.warning("Marked %d interrupted deployments as failed", len(recovered))

    # Startup: Redis connection (optional in local mode)
    app.state.redis = None
    if not settings.local_mode:
        try:
            import redis.asyncio as aioredis
            app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        except Exception:
            logger.warning("Redis not available, scheduler fire lock disabled")

    scheduler_task = None
    if settings.scheduler_enabled:
        from cronwarden.workers.scheduler import run_scheduler
        scheduler_task = asyncio.create_task(run_scheduler(app))

    logger.info("cronwarden API started (db=%s)", "sqlite" if db_url.startswith("sqlite") else "postgresql")
    yield

    # Shutdown
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
    # Deliver queued events before the database goes away
    await app.state.engine.events.close()
    if app.state.redis:
        await app.state.redis.close()
    await engine.dispose()
    logger.info("cronwarden API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="cronwarden API",
        version="1.0.0",
        description="Versioned scheduled-job definitions with approval, concurrency and data-readiness gating.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from cronwarden.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from cronwarden.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from cronwarden.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
