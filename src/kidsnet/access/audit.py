"""Audit sink — records every access action and optionally pushes a notification.

An audit write failure is logged but never fails the operation that caused
it: the firewall state is authoritative, the log is a convenience record.
"""

from __future__ import annotations

import structlog

from kidsnet.access.models import Subject
from kidsnet.integrations.notifier import CompositeNotifier
from kidsnet.store import AccessStore

logger = structlog.get_logger()


class AuditSink:
    """Writes audit entries to the store and forwards transitions to the notifier.

    Args:
        store: Durable store holding the capped audit log.
        notifier: Composite notifier, or None to disable notifications.
    """

    def __init__(self, store: AccessStore, notifier: CompositeNotifier | None = None) -> None:
        self._store = store
        self._notifier = notifier

    async def record(
        self,
        action: str,
        subject: Subject | None = None,
        detail: str = "",
        *,
        notify: bool = False,
    ) -> None:
        """Record one action.

        Args:
            action: Short action name, e.g. "toggle-block" or "timer-expire".
            subject: The subject acted on; None for global actions.
            detail: Human-readable description.
            notify: Also push a notification (used for access transitions).
        """
        tracker = subject.tracker if subject else None
        name = subject.name if subject else ""

        try:
            await self._store.append_audit(
                tracker=tracker,
                subject_name=name,
                action=action,
                detail=detail,
            )
        except Exception:
            await logger.aerror("audit_write_failed", action=action, tracker=tracker, exc_info=True)

        await logger.ainfo("access_audit", action=action, tracker=tracker, subject=name, detail=detail)

        if notify and self._notifier is not None:
            title = f"{name}: {action}" if name else action
            await self._notifier.send(title, detail or action)
