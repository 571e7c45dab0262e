"""Discord webhook backend — access transitions as embeds.

SECURITY: Webhook URL is never logged. All HTTP calls use configured timeout.
"""

from __future__ import annotations

import httpx
import structlog

from kidsnet.integrations.notifier import Notifier

logger = structlog.get_logger()

_MAX_DESCRIPTION_LENGTH = 2000

COLOR_BLOCKED = 0xFF0000
COLOR_ALLOWED = 0x2ECC71
COLOR_NEUTRAL = 0x3498DB


def _color_for(title: str) -> int:
    lowered = title.lower()
    if "block" in lowered:
        return COLOR_BLOCKED
    if "allow" in lowered:
        return COLOR_ALLOWED
    return COLOR_NEUTRAL


class DiscordNotifier(Notifier):
    """Posts notifications to a Discord channel via webhook.

    Args:
        webhook_url: The Discord webhook URL. Treated as a secret.
        timeout: HTTP request timeout in seconds.
    """

    channel = "discord"

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        from kidsnet.utils.url_safety import validate_webhook_url

        validate_webhook_url(webhook_url)
        self._webhook_url = webhook_url
        self._timeout = timeout

    async def send(self, title: str, body: str) -> bool:
        payload = {
            "embeds": [
                {
                    "title": title,
                    "description": body[:_MAX_DESCRIPTION_LENGTH],
                    "color": _color_for(title),
                    "footer": {"text": "kidsnet"},
                }
            ]
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            await logger.aerror(
                "discord_notification_http_error",
                status_code=exc.response.status_code,
            )
            return False
        except httpx.RequestError:
            await logger.aerror("discord_notification_request_error", exc_info=True)
            return False

        await logger.ainfo("discord_notification_sent", destination="discord://***")
        return True
