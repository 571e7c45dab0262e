"""ORM models — ScheduleRecord, DeviceCacheRecord, AuditEntry.

All timestamps are UTC. The audit log is append-only apart from trimming
to the configured maximum length.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ScheduleRecord(Base):
    """A subject's saved schedule. Windows are stored as the validated JSON form."""

    __tablename__ = "schedule_config"

    tracker: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    windows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<ScheduleRecord(tracker={self.tracker}, enabled={self.enabled})>"


class DeviceCacheRecord(Base):
    """Known and currently-blocked device identifiers for one subject."""

    __tablename__ = "device_cache"

    tracker: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    known: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    blocked: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class AuditEntry(Base):
    """One recorded access transition or user action."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    tracker: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subject_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("ix_audit_log_timestamp", "timestamp"),
        Index("ix_audit_log_tracker", "tracker"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntry(id={self.id}, action={self.action}, tracker={self.tracker})>"
