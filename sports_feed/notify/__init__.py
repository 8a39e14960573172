"""Notification sinks, operator alerts and message rendering."""

from __future__ import annotations

from ..config import NotifyConfig, get_smtp_password
from .alerts import Alerter
from .base import Notification, Notifier
from .discord import DiscordNotifier
from .email import EmailNotifier
from .render import render_alert, render_breaking, render_digest
from .webhook import WebhookNotifier


def build_notifiers(cfg: NotifyConfig, client=None) -> list[Notifier]:
    """Instantiate every sink enabled in config."""
    notifiers: list[Notifier] = []
    if cfg.discord_webhook_url:
        notifiers.append(DiscordNotifier(cfg.discord_webhook_url, client, cfg.timeout_seconds))
    if cfg.webhook_url:
        notifiers.append(WebhookNotifier(cfg.webhook_url, client, cfg.timeout_seconds))
    if cfg.email_enabled:
        notifiers.append(
            EmailNotifier(
                host=cfg.smtp_host,
                port=cfg.smtp_port,
                sender=cfg.email_from,
                recipients=cfg.email_to,
                username=cfg.smtp_username,
                password=get_smtp_password(cfg),
                use_tls=cfg.smtp_use_tls,
                timeout=cfg.timeout_seconds,
            )
        )
    return notifiers


__all__ = [
    "Alerter",
    "DiscordNotifier",
    "EmailNotifier",
    "Notification",
    "Notifier",
    "WebhookNotifier",
    "build_notifiers",
    "render_alert",
    "render_breaking",
    "render_digest",
]
