"""Durable store for schedules, device caches, and the audit log.

A thin async layer over SQLAlchemy. The engine treats it as opaque
load/save; every method opens its own short transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kidsnet.access.models import ScheduleConfig
from kidsnet.db.models import AuditEntry, DeviceCacheRecord, ScheduleRecord


@dataclass(frozen=True)
class AuditRecord:
    """A stored audit entry."""

    timestamp: datetime
    tracker: int | None
    subject_name: str
    action: str
    detail: str


@dataclass
class DeviceSets:
    """Known and blocked device identifiers for one subject."""

    known: set[str]
    blocked: set[str]


class AccessStore:
    """Persists engine state that must survive restarts.

    Args:
        session_factory: Async SQLAlchemy session factory.
        audit_max_entries: Audit rows kept; older rows are trimmed on append.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit_max_entries: int = 500,
    ) -> None:
        self._session_factory = session_factory
        self._audit_max_entries = audit_max_entries

    # --- Schedules ---

    async def load_schedules(self) -> dict[int, ScheduleConfig]:
        async with self._session_factory() as session:
            result = await session.execute(select(ScheduleRecord))
            records = result.scalars().all()
        return {
            record.tracker: ScheduleConfig(enabled=record.enabled, windows=record.windows)
            for record in records
        }

    async def save_schedules(self, schedules: dict[int, ScheduleConfig]) -> None:
        """Replace every stored schedule with the given map."""
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(ScheduleRecord))
                for tracker, config in schedules.items():
                    session.add(ScheduleRecord(
                        tracker=tracker,
                        enabled=config.enabled,
                        windows=[w.model_dump(mode="json") for w in config.windows],
                        updated_at=now,
                    ))

    # --- Device caches ---

    async def load_device_sets(self) -> dict[int, DeviceSets]:
        async with self._session_factory() as session:
            result = await session.execute(select(DeviceCacheRecord))
            records = result.scalars().all()
        return {
            record.tracker: DeviceSets(known=set(record.known), blocked=set(record.blocked))
            for record in records
        }

    async def save_device_sets(self, tracker: int, known: set[str], blocked: set[str]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                record = await session.get(DeviceCacheRecord, tracker)
                if record is None:
                    record = DeviceCacheRecord(tracker=tracker)
                    session.add(record)
                record.known = sorted(known)
                record.blocked = sorted(blocked)
                record.updated_at = datetime.now(UTC)

    # --- Audit log ---

    async def append_audit(
        self,
        *,
        tracker: int | None,
        subject_name: str,
        action: str,
        detail: str = "",
    ) -> None:
        """Append one entry, then trim the log to the newest audit_max_entries rows."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(AuditEntry(
                    tracker=tracker,
                    subject_name=subject_name,
                    action=action,
                    detail=detail,
                ))
                await session.flush()

                cutoff = await session.execute(
                    select(AuditEntry.id)
                    .order_by(AuditEntry.id.desc())
                    .offset(self._audit_max_entries - 1)
                    .limit(1)
                )
                oldest_kept = cutoff.scalar_one_or_none()
                if oldest_kept is not None:
                    await session.execute(delete(AuditEntry).where(AuditEntry.id < oldest_kept))

    async def list_audit(self, limit: int = 100) -> list[AuditRecord]:
        """Return audit entries, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditEntry).order_by(AuditEntry.id.desc()).limit(limit)
            )
            entries = result.scalars().all()
        return [
            AuditRecord(
                timestamp=entry.timestamp,
                tracker=entry.tracker,
                subject_name=entry.subject_name,
                action=entry.action,
                detail=entry.detail,
            )
            for entry in entries
        ]
