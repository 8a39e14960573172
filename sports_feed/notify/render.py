"""
Message rendering for notifications.

Story alerts, digests and operator alerts are rendered from Jinja2
templates shipped in ``notify/templates``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..core.text import strip_breaking_prefix
from ..core.types import Story
from .base import Notification


_env: Environment | None = None


def _environment() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _env


def breaking_subject(story: Story) -> str:
    category = story.category.value if story.category else "General"
    score = story.urgency_score or 0.0
    title = strip_breaking_prefix(story.title)
    title = title if len(title) <= 50 else title[:50] + "..."
    return f"BREAKING: {title} | {category} | Urgency: {score:.1f}/10"


def render_breaking(story: Story) -> Notification:
    """Render an immediate alert for one story."""
    env = _environment()
    return Notification(
        subject=breaking_subject(story),
        body=env.get_template("breaking.txt").render(story=story).strip(),
        html=env.get_template("breaking.html").render(story=story),
        story_ids=[story.id],
        link=story.link,
    )


def render_digest(kind: str, stories: list[Story]) -> Notification:
    """Render an hourly or daily digest.

    Stories are listed highest score first.
    """
    ordered = sorted(stories, key=lambda s: s.urgency_score or 0.0, reverse=True)
    title = "Hourly Sports Digest" if kind == "hourly" else "Daily Sports Digest"
    body = _environment().get_template("digest.txt").render(title=title, stories=ordered)
    return Notification(
        subject=f"{title}: {len(ordered)} stories",
        body=body.strip(),
        story_ids=[story.id for story in ordered],
    )


def render_alert(
    level: str,
    title: str,
    message: str,
    action_taken: str | None = None,
    details: dict[str, Any] | None = None,
) -> str:
    return (
        _environment()
        .get_template("alert.txt")
        .render(
            level=level,
            title=title,
            message=message,
            action_taken=action_taken,
            details=details or {},
        )
        .strip()
    )
