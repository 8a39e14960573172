"""
Urgency scoring and categorization for sports stories.

Scores are a weighted keyword heuristic on the lowercased title and
description, adjusted for story age and source trust, clamped to 0-10.
Scoring is deterministic: the same story and reference time always give
the same result.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .types import Category, Story, utc_now


# (keywords, weight); each group counts at most once.
KEYWORD_WEIGHTS: list[tuple[tuple[str, ...], float]] = [
    (("breaking", "urgent"), 3.0),
    (("trade", "traded"), 2.5),
    (("injured", "injury"), 2.5),
    (("scandal", "arrest"), 3.0),
    (("record", "milestone"), 2.0),
    (("fired", "hired"), 2.0),
    (("retire", "retirement"), 2.5),
]

HIGH_PROFILE_TERMS: tuple[str, ...] = (
    "mahomes",
    "brady",
    "lebron",
    "curry",
    "chiefs",
    "patriots",
    "lakers",
    "cowboys",
    "yankees",
    "dodgers",
)
HIGH_PROFILE_BONUS = 1.5

FRESH_BONUS = 1.0
STALE_PENALTY = 2.0

# Evaluated in order; first match wins.
CATEGORY_RULES: list[tuple[Category, tuple[str, ...]]] = [
    (Category.TRADE, ("trade", "traded")),
    (Category.INJURY, ("injur",)),
    (Category.SCANDAL, ("scandal", "arrest")),
    (Category.RECORD, ("record", "milestone")),
    (Category.PERSONNEL, ("fired", "hired")),
    (Category.RETIREMENT, ("retire",)),
    (Category.GAME_RESULT, ("game", "score")),
]

URGENT_PREFIXES: tuple[str, ...] = (
    "breaking:",
    "just in:",
    "urgent:",
    "report:",
    "confirmed:",
    "official:",
    "developing:",
    "alert:",
    "update:",
)

TIME_SENSITIVE_PHRASES: tuple[str, ...] = (
    "just signed",
    "just announced",
    "just traded",
    "just released",
    "just fired",
    "just hired",
    "just suspended",
    "just activated",
    "just placed on",
    "minutes ago",
    "just now",
)


def story_text(title: str, description: str | None) -> str:
    return f"{title} {description or ''}".lower()


def urgency_score(
    title: str,
    description: str | None,
    published_at: datetime | None,
    source_priority: int,
    now: datetime | None = None,
) -> float:
    """Compute the 0-10 urgency score.

    Args:
        title: Story title
        description: Story description, None treated as empty
        published_at: Publication time; None counts as just published
        source_priority: Source trust rank, 1 is the most trusted
        now: Reference time, defaults to the current UTC time

    Returns:
        Score clamped to [0, 10]
    """
    text = story_text(title, description)
    score = 0.0

    for keywords, weight in KEYWORD_WEIGHTS:
        if any(word in text for word in keywords):
            score += weight

    if any(term in text for term in HIGH_PROFILE_TERMS):
        score += HIGH_PROFILE_BONUS

    hours_old = 0.0
    if published_at is not None:
        reference = now or utc_now()
        hours_old = (reference - published_at).total_seconds() / 3600
    if hours_old < 1:
        score += FRESH_BONUS
    elif hours_old > 24:
        score -= STALE_PENALTY

    score += 3 - source_priority
    return min(max(score, 0.0), 10.0)


def categorize(text: str) -> Category:
    lowered = text.lower()
    for category, needles in CATEGORY_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return Category.GENERAL


def score_story(story: Story, now: datetime | None = None) -> tuple[float, Category]:
    """Score and categorize a story without modifying it."""
    score = urgency_score(
        story.title,
        story.description,
        story.published_at,
        story.source_priority,
        now=now,
    )
    return score, categorize(story_text(story.title, story.description))


def is_breaking(title: str, description: str | None, keywords: Iterable[str]) -> bool:
    """Flag stories that read like breaking news.

    Used for log annotation only; routing is driven by the urgency score.
    """
    text = story_text(title, description)
    if any(keyword.lower() in text for keyword in keywords):
        return True
    if any(prefix in text for prefix in URGENT_PREFIXES):
        return True
    return any(phrase in text for phrase in TIME_SENSITIVE_PHRASES)
