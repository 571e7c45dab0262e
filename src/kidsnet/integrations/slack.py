"""Slack webhook backend — access transitions as Block Kit messages.

SECURITY: Webhook URL is validated via SSRF protection and never logged.
"""

from __future__ import annotations

import httpx
import structlog

from kidsnet.integrations.notifier import Notifier

logger = structlog.get_logger()

_MAX_BODY_LENGTH = 1000


class SlackNotifier(Notifier):
    """Posts notifications to a Slack channel via Incoming Webhook.

    Args:
        webhook_url: The Slack Incoming Webhook URL. Treated as a secret.
        timeout: HTTP request timeout in seconds.
    """

    channel = "slack"

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        from kidsnet.utils.url_safety import validate_webhook_url

        validate_webhook_url(webhook_url)
        self._webhook_url = webhook_url
        self._timeout = timeout

    @staticmethod
    def build_payload(title: str, body: str) -> dict:
        """Build a Block Kit payload with a header and a text section."""
        return {
            "text": f"{title}: {body[:_MAX_BODY_LENGTH]}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": title[:150]},
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": body[:_MAX_BODY_LENGTH]},
                },
            ],
        }

    async def send(self, title: str, body: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, json=self.build_payload(title, body))
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            await logger.aerror(
                "slack_notification_http_error",
                status_code=exc.response.status_code,
            )
            return False
        except httpx.RequestError:
            await logger.aerror("slack_notification_request_error", exc_info=True)
            return False

        await logger.ainfo("slack_notification_sent", destination="slack://***")
        return True
