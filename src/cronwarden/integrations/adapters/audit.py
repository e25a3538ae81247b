"""Database audit sink: one row per recorded job event."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cronwarden.integrations.ports import AuditLogPort
from cronwarden.repositories.approval_repo import AuditEventRepository
from cronwarden.services.id_generator import AUDIT_PREFIX, generate_id

logger = logging.getLogger(__name__)


class DatabaseAuditLog(AuditLogPort):
    """Writes one ``audit_events`` row per call in its own transaction."""

    adapter_type = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record(self, actor: str, action: str, job_id: str, details: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await AuditEventRepository(session).create(
                event_id=generate_id(AUDIT_PREFIX),
                job_id=job_id,
                actor=actor,
                action=action,
                details=details,
                created_at=datetime.now(timezone.utc),
            )
            await session.commit()

    async def list_for_job(self, job_id: str, limit: int = 100) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await AuditEventRepository(session).list_for_job(job_id, limit)
        return [
            {
                "event_id": r.event_id,
                "job_id": r.job_id,
                "actor": r.actor,
                "action": r.action,
                "details": r.details,
                "created_at": r.created_at.isoformat(),
            }
            for r in rows
        ]
