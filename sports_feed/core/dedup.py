"""
Story deduplication using fingerprints and fuzzy title comparison.

Two layers:
1. FingerprintStore: remembers every story id seen across cycles
2. dedup_by_title: drops syndicated copies within one batch
"""

from __future__ import annotations

import asyncio
import logging

from rapidfuzz import fuzz

from ..logging_utils import log_event
from ..storage import SEEN_STORIES, JsonStore
from .types import Story


class FingerprintStore:
    """Set of story fingerprints already seen.

    When the set grows past ``max_size`` it is cleared entirely, so a story
    may be seen as new again after a clear.

    Args:
        max_size: Size at which the set is reset
        store: Optional JsonStore used by ``load``/``save``
    """

    def __init__(self, max_size: int = 10000, store: JsonStore | None = None):
        self.max_size = max_size
        self.store = store
        self._seen: set[str] = set()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger("sports_feed.dedup")

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    async def is_new(self, story: Story) -> bool:
        """Check and mark a story in one step.

        Returns True exactly once per fingerprint (until the set is cleared).
        """
        async with self._lock:
            if story.id in self._seen:
                return False
            self.mark_seen(story.id)
            return True

    def mark_seen(self, fingerprint: str) -> None:
        self._seen.add(fingerprint)
        if len(self._seen) > self.max_size:
            size = len(self._seen)
            self._seen.clear()
            log_event(
                self.logger,
                "Fingerprint store cleared",
                event="dedup_cleared",
                size=size,
                max_size=self.max_size,
            )

    def load(self) -> int:
        if self.store is None:
            return 0
        data = self.store.read(SEEN_STORIES, default=[])
        if isinstance(data, list):
            self._seen = {str(item) for item in data[-self.max_size :]}
        return len(self._seen)

    def save(self) -> bool:
        if self.store is None:
            return False
        return self.store.write_safely(SEEN_STORIES, sorted(self._seen))


def dedup_by_title(stories: list[Story], threshold: int = 92) -> tuple[list[Story], list[Story]]:
    """Drop stories whose titles closely match an earlier one in the batch.

    Syndicated wire stories often appear on several feeds with different
    links and slightly edited headlines. Stories are compared in order, so
    the copy from the first (usually most trusted) source is kept.

    Args:
        stories: Stories in source-priority order
        threshold: Similarity threshold (0-100) for rapidfuzz ratio

    Returns:
        Tuple of (kept, dropped), both preserving input order
    """
    kept: list[Story] = []
    dropped: list[Story] = []
    titles: list[str] = []

    for story in stories:
        title = story.title.lower()
        if _is_similar_title(title, titles, threshold):
            dropped.append(story)
            continue
        titles.append(title)
        kept.append(story)

    return kept, dropped


def _is_similar_title(title: str, titles: list[str], threshold: int) -> bool:
    for existing in titles:
        if fuzz.ratio(title, existing) >= threshold:
            return True
    return False
