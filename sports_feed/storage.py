"""
JSON file persistence for pipeline state.

Every stateful component keeps its state in a single JSON document under the
configured state directory. Writes go to a temp file first and are moved into
place with ``os.replace`` so a crash never leaves a half-written document.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any

from .core.types import Story
from .logging_utils import log_event


SEEN_STORIES = "seen-stories.json"
ERROR_LOG = "error-log.json"
RETRY_QUEUE = "retry-queue.json"
DAILY_COSTS = "daily-costs.json"
API_USAGE = "api-usage.json"
WORKFLOW_STATE = "workflow-state.json"
PROCESSED_STORIES = "processed-stories.json"
DIGESTS = "digests.json"


class JsonStore:
    """Reads and writes named JSON documents in one directory."""

    def __init__(self, state_dir: Path | str):
        self.state_dir = Path(state_dir)
        self.logger = logging.getLogger("sports_feed.storage")

    def path(self, name: str) -> Path:
        return self.state_dir / name

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def read(self, name: str, default: Any = None) -> Any:
        """Load a document, returning ``default`` if it is missing or corrupt."""
        path = self.path(name)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_event(
                self.logger,
                "State file unreadable",
                level=logging.WARNING,
                event="state_read_failed",
                file=name,
                error=str(exc),
            )
            return default

    def write(self, name: str, data: Any) -> None:
        """Atomically replace a document. Raises OSError on failure."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.state_dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_name, self.path(name))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def write_safely(self, name: str, data: Any) -> bool:
        """Write a document, logging instead of raising on I/O errors."""
        try:
            self.write(name, data)
            return True
        except OSError as exc:
            log_event(
                self.logger,
                "State file write failed",
                level=logging.ERROR,
                event="state_write_failed",
                file=name,
                error=str(exc),
            )
            return False


class StoryLog:
    """Bounded log of processed stories, oldest evicted first."""

    def __init__(self, store: JsonStore, cap: int = 1000):
        self.store = store
        self.cap = cap

    def load(self) -> list[dict[str, Any]]:
        data = self.store.read(PROCESSED_STORIES, default=[])
        return data if isinstance(data, list) else []

    def load_ids(self) -> set[str]:
        return {item["id"] for item in self.load() if isinstance(item, dict) and "id" in item}

    def append(self, stories: list[Story]) -> int:
        """Append stories and trim to the cap. Returns the resulting size."""
        if not stories:
            return len(self.load())
        entries = self.load()
        entries.extend(story.to_dict() for story in stories)
        if len(entries) > self.cap:
            entries = entries[-self.cap :]
        self.store.write_safely(PROCESSED_STORIES, entries)
        return len(entries)

    def recent(self, limit: int = 20) -> list[Story]:
        return [Story.from_dict(item) for item in self.load()[-limit:]]
