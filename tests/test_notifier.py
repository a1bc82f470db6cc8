"""
Tests for tools/notifier.py — Discord webhook delivery, mocked.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import discord

from tools.notifier import DiscordWebhookNotifier
from tools.research_tracker import ResearchTracker
from tools.state_backends import MemoryStateBackend


def _session():
    session = MagicMock()
    session.closed = False
    return session


class TestDiscordWebhookNotifier:

    def test_sends_embed_to_audience_webhook(self):
        webhook = MagicMock()
        webhook.send = AsyncMock()
        with patch("tools.notifier.discord.Webhook.from_url", return_value=webhook) as from_url:
            notifier = DiscordWebhookNotifier("https://player", "https://gm", session=_session())
            asyncio.run(notifier.notify("gm", "T" * 300, "<p>Secret</p>"))

        assert from_url.call_args.args == ("https://gm",)
        embed = webhook.send.call_args.kwargs["embed"]
        assert len(embed.title) == 256
        assert embed.description == "<p>Secret</p>"

    def test_http_error_logged_not_raised(self, caplog):
        webhook = MagicMock()
        webhook.send = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=500, reason="down"), "boom"))
        with patch("tools.notifier.discord.Webhook.from_url", return_value=webhook):
            notifier = DiscordWebhookNotifier("https://player", "https://gm", session=_session())
            asyncio.run(notifier.notify("player", "Title", "Body"))

        assert "delivery to 'player' failed" in caplog.text

    def test_connection_error_logged_not_raised(self, caplog):
        webhook = MagicMock()
        webhook.send = AsyncMock(side_effect=aiohttp.ClientConnectionError("webhook host unreachable"))
        with patch("tools.notifier.discord.Webhook.from_url", return_value=webhook):
            notifier = DiscordWebhookNotifier("https://player", "https://gm", session=_session())
            asyncio.run(notifier.notify("gm", "Title", "Body"))

        assert "delivery to 'gm' failed" in caplog.text

    def test_invalid_webhook_url_logged_not_raised(self, caplog):
        notifier = DiscordWebhookNotifier("not-a-webhook", "https://gm", session=_session())
        asyncio.run(notifier.notify("player", "Title", "Body"))
        assert "delivery to 'player' failed" in caplog.text

    def test_unreachable_webhook_does_not_fail_reveal_pass(self):
        webhook = MagicMock()
        webhook.send = AsyncMock(side_effect=aiohttp.ClientConnectionError("webhook host unreachable"))

        async def run():
            notifier = DiscordWebhookNotifier("https://player", "https://gm", session=_session())
            tracker = ResearchTracker(MemoryStateBackend(), notifier)
            await tracker.initialize()
            topic = await tracker.create_topic({"name": "Old Library", "target": 5})
            first = await tracker.create_threshold(topic.id, {"points": 1})
            second = await tracker.create_threshold(topic.id, {"points": 2})

            result = await tracker.adjust_points(topic.id, 2)
            assert result.progress == 2
            assert result.is_threshold_revealed(first.id)
            assert result.is_threshold_revealed(second.id)

        with patch("tools.notifier.discord.Webhook.from_url", return_value=webhook):
            asyncio.run(run())

        assert webhook.send.await_count == 4

    def test_unconfigured_audience_dropped(self, caplog):
        notifier = DiscordWebhookNotifier("", "https://gm", session=_session())
        asyncio.run(notifier.notify("player", "Title", "Body"))
        assert "No webhook configured for audience 'player'" in caplog.text

    def test_close_leaves_injected_session_open(self):
        session = _session()
        session.close = AsyncMock()
        notifier = DiscordWebhookNotifier("https://player", "https://gm", session=session)
        asyncio.run(notifier.close())
        session.close.assert_not_called()
