"""
Notifiers — deliver reveal announcements to players and to the GM.

The tracker hands over a title and an opaque rich-text body; a notifier
decides where they go. Two audiences exist: "player" and "gm".
"""

import logging
from typing import Dict, Optional, Protocol, runtime_checkable

import aiohttp
import discord

logger = logging.getLogger("Notifier")

AUDIENCE_PLAYER = "player"
AUDIENCE_GM = "gm"
AUDIENCES = (AUDIENCE_PLAYER, AUDIENCE_GM)


@runtime_checkable
class Notifier(Protocol):
    """Notification collaborator used by reveal automation."""

    async def notify(self, audience: str, title: str, body_html: str) -> None:
        ...


class LoggingNotifier:
    """Writes announcements to the log. Default when no webhooks are configured."""

    async def notify(self, audience: str, title: str, body_html: str) -> None:
        logger.info(f"[{audience}] {title}: {body_html}")


class DiscordWebhookNotifier:
    """Posts announcements as embeds through one Discord webhook per audience.

    Usage:
        notifier = DiscordWebhookNotifier(player_url, gm_url)
        await notifier.notify("player", "Old Library", "<p>The index is found.</p>")
        await notifier.close()      # cleans up the HTTP session
    """

    TITLE_LIMIT = 256
    DESCRIPTION_LIMIT = 4096

    def __init__(
        self,
        player_webhook_url: str,
        gm_webhook_url: str,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._urls = {AUDIENCE_PLAYER: player_webhook_url, AUDIENCE_GM: gm_webhook_url}
        self._session = session
        self._owns_session = session is None
        self._webhooks: Dict[str, discord.Webhook] = {}

    def _webhook(self, audience: str) -> Optional[discord.Webhook]:
        url = self._urls.get(audience)
        if not url:
            return None
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
            self._webhooks.clear()
        if audience not in self._webhooks:
            self._webhooks[audience] = discord.Webhook.from_url(url, session=self._session)
        return self._webhooks[audience]

    async def notify(self, audience: str, title: str, body_html: str) -> None:
        if not self._urls.get(audience):
            logger.warning(f"No webhook configured for audience '{audience}', dropping: {title}")
            return
        embed = discord.Embed(
            title=title[: self.TITLE_LIMIT],
            description=(body_html or "")[: self.DESCRIPTION_LIMIT],
            color=discord.Color.gold() if audience == AUDIENCE_PLAYER else discord.Color.dark_red(),
        )
        # Delivery failures never reach the caller; the state is already saved.
        try:
            await self._webhook(audience).send(embed=embed)
        except (discord.HTTPException, aiohttp.ClientError, OSError, ValueError) as e:
            logger.error(f"Discord webhook delivery to '{audience}' failed: {e}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._webhooks.clear()
