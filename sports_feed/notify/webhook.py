"""Generic JSON webhook notifier."""

from __future__ import annotations

import logging

import httpx

from ..core.types import utc_now
from ..logging_utils import log_event
from .base import Notification, Notifier, post_json


class WebhookNotifier(Notifier):
    name = "webhook"

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.url = url
        self.client = client
        self.timeout = timeout
        self.logger = logging.getLogger("sports_feed.notify.webhook")

    async def notify(self, message: Notification) -> None:
        payload = {
            "subject": message.subject,
            "body": message.body,
            "story_ids": message.story_ids,
            "link": message.link,
            "timestamp": utc_now().isoformat(),
        }
        await post_json(self.client, self.url, payload, self.timeout, "webhook")
        log_event(self.logger, "Webhook notification sent", event="notify_sent", sink=self.name)
