"""Tests for Discord webhook notification integration."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from kidsnet.integrations.discord import (
    COLOR_ALLOWED,
    COLOR_BLOCKED,
    COLOR_NEUTRAL,
    DiscordNotifier,
)


@pytest.fixture
def discord_notifier() -> DiscordNotifier:
    """Create a DiscordNotifier with mocked URL validation."""
    with patch("kidsnet.utils.url_safety.validate_webhook_url"):
        return DiscordNotifier(
            webhook_url="https://discord.com/api/webhooks/123/abc",
            timeout=5.0,
        )


def _ok_response() -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status_code = 204
    mock_response.raise_for_status = lambda: None
    return mock_response


class TestDiscordNotifier:
    async def test_send_success(self, discord_notifier: DiscordNotifier) -> None:
        with patch("httpx.AsyncClient.post", return_value=_ok_response()) as mock_post:
            result = await discord_notifier.send("Lydia: toggle-block", "addresses=1")

        assert result is True
        payload = mock_post.call_args[1]["json"]
        embed = payload["embeds"][0]
        assert embed["title"] == "Lydia: toggle-block"
        assert embed["description"] == "addresses=1"
        assert embed["color"] == COLOR_BLOCKED

    @pytest.mark.parametrize(
        ("title", "color"),
        [
            ("Tristan: schedule-allow", COLOR_ALLOWED),
            ("Tristan: timer-expire", COLOR_NEUTRAL),
            ("block-all", COLOR_BLOCKED),
        ],
    )
    async def test_color_by_title(self, discord_notifier: DiscordNotifier, title: str, color: int) -> None:
        with patch("httpx.AsyncClient.post", return_value=_ok_response()) as mock_post:
            await discord_notifier.send(title, "body")
        assert mock_post.call_args[1]["json"]["embeds"][0]["color"] == color

    async def test_long_body_truncated(self, discord_notifier: DiscordNotifier) -> None:
        with patch("httpx.AsyncClient.post", return_value=_ok_response()) as mock_post:
            await discord_notifier.send("title", "x" * 5000)
        assert len(mock_post.call_args[1]["json"]["embeds"][0]["description"]) == 2000

    async def test_request_error_returns_false(self, discord_notifier: DiscordNotifier) -> None:
        with patch("httpx.AsyncClient.post", side_effect=httpx.RequestError("Connection refused")):
            assert await discord_notifier.send("title", "body") is False

    async def test_http_error_returns_false(self, discord_notifier: DiscordNotifier) -> None:
        response = MagicMock()
        response.status_code = 429
        error = httpx.HTTPStatusError("rate limited", request=MagicMock(), response=response)
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = error

        with patch("httpx.AsyncClient.post", return_value=mock_response):
            assert await discord_notifier.send("title", "body") is False

    def test_insecure_url_rejected(self) -> None:
        with pytest.raises(ValueError, match="HTTPS"):
            DiscordNotifier(webhook_url="http://discord.com/api/webhooks/1/abc")
