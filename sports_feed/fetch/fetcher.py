"""
RSS feed fetching.

Feeds are downloaded with httpx and parsed with feedparser. Feed fields are
cleaned of markup here so every later stage works on plain text.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import logging
from typing import Any

import feedparser
import httpx

from ..config import SourceConfig
from ..core.text import clean_text
from ..core.types import RawItem
from ..errors import ApiError, FeedError
from ..logging_utils import log_event


logger = logging.getLogger("sports_feed.fetch")


async def fetch_feed(
    source: SourceConfig,
    client: httpx.AsyncClient,
    timeout: float = 10.0,
) -> list[RawItem]:
    """Download and parse one source's feed.

    Args:
        source: Feed to fetch
        client: Shared async HTTP client
        timeout: Request timeout in seconds

    Returns:
        Items in feed order

    Raises:
        ApiError: The server answered with a non-2xx status
        FeedError: The body could not be parsed as a feed
        httpx.HTTPError: Network-level failure
    """
    resp = await client.get(source.url, timeout=timeout, follow_redirects=True)
    if resp.status_code >= 400:
        raise ApiError.from_response(resp, source.name)
    items = parse_feed(resp.content, source.name)
    log_event(
        logger,
        "Feed fetched",
        event="feed_fetched",
        source=source.name,
        status_code=resp.status_code,
        items=len(items),
    )
    return items


def parse_feed(content: bytes | str, source_name: str = "") -> list[RawItem]:
    parsed = feedparser.parse(content)
    entries = parsed.entries or []
    if parsed.bozo:
        if not entries:
            raise FeedError(f"{source_name or 'feed'} is not a parseable feed: {parsed.bozo_exception}")
        log_event(
            logger,
            "Feed parsed with warnings",
            level=logging.WARNING,
            event="feed_parse_warning",
            source=source_name,
            error=str(parsed.bozo_exception),
        )

    items: list[RawItem] = []
    for entry in entries:
        item = _entry_to_item(entry)
        if item is not None:
            items.append(item)
    return items


def _entry_to_item(entry: Any) -> RawItem | None:
    title = clean_text(entry.get("title"))
    link = (entry.get("link") or "").strip()
    if not title or not link:
        return None
    description = clean_text(entry.get("summary") or entry.get("description"))
    published = _parse_date_value(entry.get("published_parsed") or entry.get("published"))
    if published is None:
        published = _parse_date_value(entry.get("updated_parsed") or entry.get("updated"))
    guid = entry.get("id") or entry.get("guid") or None
    return RawItem(
        title=title,
        description=description,
        link=link,
        published_at=published,
        guid=str(guid).strip() if guid else None,
    )


def _parse_date_value(value: Any) -> datetime | None:
    if value is None:
        return None
    if hasattr(value, "tm_year"):
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(value)
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None
