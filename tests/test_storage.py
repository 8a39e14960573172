from pathlib import Path

from sports_feed.core.types import Story
from sports_feed.storage import PROCESSED_STORIES, JsonStore, StoryLog


def _story(index: int) -> Story:
    return Story(
        id=f"story-{index}",
        title=f"Story {index}",
        description="",
        link=f"https://example.com/{index}",
        source_name="Wire",
        source_priority=1,
    )


def test_read_missing_or_corrupt_document_returns_default(tmp_path: Path):
    store = JsonStore(tmp_path)
    assert store.read("missing.json", default={"a": 1}) == {"a": 1}

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert store.read("broken.json", default=[]) == []


def test_write_replaces_document_without_leaving_temp_files(tmp_path: Path):
    store = JsonStore(tmp_path / "state")
    store.write("doc.json", {"count": 1})
    store.write("doc.json", {"count": 2})
    assert store.read("doc.json") == {"count": 2}
    assert [p.name for p in (tmp_path / "state").iterdir()] == ["doc.json"]


def test_write_safely_reports_failure(tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = JsonStore(blocker)
    assert store.write_safely("doc.json", {}) is False


def test_story_log_evicts_oldest_entries(tmp_path: Path):
    store = JsonStore(tmp_path)
    log = StoryLog(store, cap=3)
    assert log.append([_story(i) for i in range(2)]) == 2
    assert log.append([_story(i) for i in range(2, 5)]) == 3

    assert log.load_ids() == {"story-2", "story-3", "story-4"}
    assert [story.id for story in log.recent(2)] == ["story-3", "story-4"]
    assert len(store.read(PROCESSED_STORIES)) == 3
