"""Text cleaning and story fingerprinting."""

from __future__ import annotations

import hashlib
import html
import re

from bs4 import BeautifulSoup


_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_WS_RE = re.compile(r"\s+")
_BREAKING_PREFIX_RE = re.compile(r"^\s*breaking(?: news)?\s*[:\-|]\s*", re.IGNORECASE)


def clean_text(value: str | None) -> str:
    """Strip markup from a feed field and normalize whitespace.

    Args:
        value: Raw title or description, may contain CDATA, HTML and entities

    Returns:
        Plain text with collapsed whitespace, "" for None
    """
    if not value:
        return ""
    text = _CDATA_RE.sub(r"\1", value)
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def strip_breaking_prefix(title: str) -> str:
    """Drop a leading "BREAKING:" so callers can add their own."""
    return _BREAKING_PREFIX_RE.sub("", title, count=1)


def story_fingerprint(
    source_name: str,
    guid: str | None,
    title: str,
    link: str,
) -> str:
    """Compute the stable dedup id for a story.

    Feeds that publish a guid are keyed on source and guid; the rest fall
    back to title and link.
    """
    if guid:
        basis = f"{source_name}|{guid}"
    else:
        basis = f"{title}|{link}"
    return hashlib.sha256(basis.encode("utf-8")).hexdigest()[:16]
