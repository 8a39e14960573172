"""Operator alerts for budget breaches and retry escalations."""

from __future__ import annotations

from collections import deque
import logging
from typing import Any

import httpx

from ..core.types import utc_now
from ..errors import ApiError
from ..logging_utils import log_event
from .base import post_json
from .render import render_alert


_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "critical": logging.CRITICAL,
}


class Alerter:
    """Logs alerts and forwards them to the alert webhook.

    Delivery failures are logged and swallowed: an alert must never take
    down the operation that raised it.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        history_size: int = 100,
    ):
        self.webhook_url = webhook_url
        self.client = client
        self.timeout = timeout
        self.history: deque[dict[str, Any]] = deque(maxlen=history_size)
        self.logger = logging.getLogger("sports_feed.alerts")

    async def alert(
        self,
        level: str,
        title: str,
        message: str,
        action_taken: str | None = None,
        **details: Any,
    ) -> bool:
        """Emit an alert. Returns True if the webhook accepted it."""
        payload = {
            "level": level.upper(),
            "title": title,
            "message": message,
            "action_taken": action_taken,
            "details": details,
            "timestamp": utc_now().isoformat(),
        }
        self.history.append(payload)
        log_event(
            self.logger,
            f"ALERT: {title}",
            level=_LEVELS.get(level.lower(), logging.WARNING),
            event="alert",
            alert_level=level,
            alert_message=message,
        )
        if not self.webhook_url:
            return False
        payload["text"] = render_alert(level, title, message, action_taken, details)
        try:
            await post_json(self.client, self.webhook_url, payload, self.timeout, "alert_webhook")
        except (httpx.HTTPError, ApiError) as exc:
            log_event(
                self.logger,
                "Alert delivery failed",
                level=logging.ERROR,
                event="alert_failed",
                error=str(exc),
            )
            return False
        return True
