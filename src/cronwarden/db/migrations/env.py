"""Alembic async migration environment for the cronwarden schema."""

import asyncio
from logging.config import fileConfig

from alembic import context

from cronwarden.config import settings
from cronwarden.db.base import Base
from cronwarden.db.engine import create_db_engine
import cronwarden.db.models  # noqa: F401 - register tables on Base.metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline():
    """Emit SQL for the configured database without connecting."""
    context.configure(
        url=settings.effective_database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    """Run migrations against a live database through the app's engine factory."""
    connectable = create_db_engine()
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
