"""Prompt loading and rendering helpers for rewrite providers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from rapidfuzz import fuzz

from ..core.text import strip_breaking_prefix


_PROMPT_DIR = Path(__file__).resolve().parent.parent / "prompts"


@dataclass(frozen=True)
class RewriteStyle:
    name: str
    label: str
    default_length: str


STYLES: dict[str, RewriteStyle] = {
    "breaking": RewriteStyle("breaking", "Breaking News Style", "45-60 seconds"),
    "analysis": RewriteStyle("analysis", "Analysis Style", "1-2 minutes"),
    "recap": RewriteStyle("recap", "Story Recap Style", "30-45 seconds"),
    "opinion": RewriteStyle("opinion", "Opinion Commentary", "1-2 minutes"),
    "quick": RewriteStyle("quick", "Quick Update", "15-30 seconds"),
}


@lru_cache(maxsize=None)
def _load_template(name: str) -> str:
    path = _PROMPT_DIR / f"{name}.md"
    return path.read_text(encoding="utf-8").strip()


def get_style(style: str) -> RewriteStyle:
    try:
        return STYLES[style]
    except KeyError:
        available = ", ".join(sorted(STYLES))
        raise ValueError(f"Unknown rewrite style: {style}. Available: {available}") from None


def system_prompt() -> str:
    return _load_template("system")


def build_rewrite_prompt(
    text: str,
    style: str,
    target_length: str | None = None,
    language: str = "English",
) -> str:
    rewrite_style = get_style(style)
    return _load_template(rewrite_style.name).format(
        story=text,
        target_length=target_length or rewrite_style.default_length,
        language=language,
    )


def originality_score(original: str, rewritten: str) -> float:
    """100 minus the token-set similarity of the two texts."""
    return max(0.0, 100.0 - fuzz.token_set_ratio(original, rewritten))


def fallback_rewrites(title: str, description: str, styles: list[str]) -> dict[str, str]:
    """Template variants used when the rewrite service is unavailable."""
    variants = {
        "breaking": f"BREAKING: {strip_breaking_prefix(title)}",
        "analysis": f"Sports Update: {title}. {description[:100]}...",
        "recap": f"Here's what happened: {title}",
        "opinion": f"My take on this: {title}",
        "quick": f"Quick update: {title}",
    }
    return {style: variants.get(style, title) for style in styles}
