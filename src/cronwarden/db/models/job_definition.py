"""Job definition head snapshot and append-only version history tables."""

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cronwarden.db.base import Base, TimestampMixin, UTCDateTime


class JobDefinitionRow(Base, TimestampMixin):
    __tablename__ = "job_definitions"

    job_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    lifecycle_status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    environment: Mapped[str] = mapped_column(String(50), nullable=False)
    queue_priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    # JobSpec of the head version
    spec: Mapped[dict] = mapped_column(JSON, nullable=False)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(200), nullable=False)
    version_created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    approval_request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    next_fire_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    deferred_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_fire_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class JobVersionRow(Base):
    """One superseded version. Rows are inserted once and never updated."""

    __tablename__ = "job_versions"

    job_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("job_definitions.job_id"), primary_key=True
    )
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
