"""Push notification protocol and composite dispatcher.

Backends implement send(title, body). The composite notifier dispatches to
every configured backend concurrently; a failing backend is logged and never
blocks the others or the caller.
"""

from __future__ import annotations

import abc
import asyncio

import structlog

from kidsnet.observability.metrics import record_notification

logger = structlog.get_logger()


class Notifier(abc.ABC):
    """Abstract base for notification backends."""

    channel: str = "unknown"

    @abc.abstractmethod
    async def send(self, title: str, body: str) -> bool:
        """Send a notification.

        Returns:
            True if the notification was delivered, False otherwise.
        """


class CompositeNotifier:
    """Dispatches a notification to all configured backends.

    Args:
        notifiers: Backends to dispatch to. May be empty.
    """

    def __init__(self, notifiers: list[Notifier]) -> None:
        self._notifiers = notifiers

    @property
    def backends(self) -> list[Notifier]:
        """Return the list of configured notification backends."""
        return list(self._notifiers)

    async def send(self, title: str, body: str) -> list[bool]:
        """Send to every backend concurrently. Returns one success flag per backend."""
        if not self._notifiers:
            return []

        tasks = [
            asyncio.create_task(self._safe_send(notifier, title, body))
            for notifier in self._notifiers
        ]
        return list(await asyncio.gather(*tasks))

    async def _safe_send(self, notifier: Notifier, title: str, body: str) -> bool:
        try:
            sent = await notifier.send(title, body)
        except Exception:
            await logger.aerror(
                "notification_failed",
                backend=type(notifier).__name__,
                title=title,
                exc_info=True,
            )
            return False
        if sent:
            record_notification(notifier.channel)
        return sent


def create_notifier(
    discord_webhook_url: str | None = None,
    slack_webhook_url: str | None = None,
    httpx_timeout: float = 10.0,
) -> CompositeNotifier:
    """Build a CompositeNotifier from configured webhook URLs.

    Only backends with a configured URL are included; with none configured,
    notifications are silently skipped.
    """
    from kidsnet.integrations.discord import DiscordNotifier
    from kidsnet.integrations.slack import SlackNotifier

    notifiers: list[Notifier] = []

    if discord_webhook_url:
        notifiers.append(DiscordNotifier(webhook_url=discord_webhook_url, timeout=httpx_timeout))

    if slack_webhook_url:
        notifiers.append(SlackNotifier(webhook_url=slack_webhook_url, timeout=httpx_timeout))

    return CompositeNotifier(notifiers)
