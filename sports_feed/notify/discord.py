"""Discord webhook notifier."""

from __future__ import annotations

import logging

import httpx

from ..logging_utils import log_event, truncate_text
from .base import Notification, Notifier, post_json


DISCORD_CONTENT_LIMIT = 2000
DISCORD_EMBED_TITLE_LIMIT = 256
DISCORD_EMBED_DESCRIPTION_LIMIT = 4096
EMBED_COLOR = 0xE74C3C


class DiscordNotifier(Notifier):
    name = "discord"

    def __init__(
        self,
        webhook_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.webhook_url = webhook_url
        self.client = client
        self.timeout = timeout
        self.logger = logging.getLogger("sports_feed.notify.discord")

    def build_payload(self, message: Notification) -> dict:
        embed = {
            "title": truncate_text(message.subject, DISCORD_EMBED_TITLE_LIMIT),
            "description": truncate_text(message.body, DISCORD_EMBED_DESCRIPTION_LIMIT),
            "color": EMBED_COLOR,
        }
        if message.link:
            embed["url"] = message.link
        return {
            "content": truncate_text(message.subject, DISCORD_CONTENT_LIMIT),
            "embeds": [embed],
        }

    async def notify(self, message: Notification) -> None:
        await post_json(self.client, self.webhook_url, self.build_payload(message), self.timeout, "discord")
        log_event(
            self.logger,
            "Discord notification sent",
            event="notify_sent",
            sink=self.name,
            subject=message.subject,
        )
