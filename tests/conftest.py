"""Shared test fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from cronwarden.config import Settings
from cronwarden.db.base import Base
from cronwarden.db.engine import create_db_engine, create_session_factory
# Import all models to register with Base.metadata
import cronwarden.db.models  # noqa: F401
from cronwarden.integrations.adapters.memory import (
    InMemoryApprovalWorkflow,
    InMemoryAuditLog,
    InMemoryExecutionTrigger,
    InMemoryNotifier,
    StaticDependencyOracle,
    StaticHolidayCalendar,
)
from cronwarden.integrations.service import Collaborators
from cronwarden.models.job import JobDefinitionCreate
from cronwarden.services.engine import build_engine


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so concurrent sessions get separate connections."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'cronwarden_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def test_settings():
    return Settings(
        local_mode=True,
        scheduler_enabled=False,
        collaborator_timeout_seconds=0.5,
        gating_retry_seconds=60,
        max_triggers_per_tick=50,
    )


@pytest.fixture
def collaborators():
    return Collaborators(
        approvals=InMemoryApprovalWorkflow(),
        oracle=StaticDependencyOracle(),
        trigger=InMemoryExecutionTrigger(),
        notifier=InMemoryNotifier(),
        audit=InMemoryAuditLog(),
        calendars=StaticHolidayCalendar(),
    )


@pytest.fixture
async def engine(session_factory, collaborators, test_settings):
    """Fully wired job engine over the test database and in-memory ports."""
    engine = build_engine(session_factory, collaborators, test_settings)
    yield engine
    await engine.events.close()


@pytest.fixture
def make_draft():
    """Factory for valid job drafts; keyword arguments replace top-level fields."""

    def _make(**overrides) -> JobDefinitionCreate:
        data = {
            "name": "nightly-export",
            "owner": "data-platform",
            "author": "ops-bot",
            "tags": ["etl"],
            "schedule": {"expression": "*/15 9-17 * * 1-5"},
            "execution": {"command": "/opt/jobs/export.sh", "arguments": ["--full"]},
        }
        data.update(overrides)
        return JobDefinitionCreate.model_validate(data)

    return _make


@pytest.fixture
def app(db_engine, session_factory, engine):
    """Create a test application instance wired to the test engine."""
    from cronwarden.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.engine = engine
    _app.state.redis = None
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
