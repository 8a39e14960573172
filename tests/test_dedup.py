import asyncio
from pathlib import Path

from sports_feed.core.dedup import FingerprintStore, dedup_by_title
from sports_feed.core.types import Story
from sports_feed.storage import SEEN_STORIES, JsonStore


def _story(story_id: str, title: str = "Title") -> Story:
    return Story(
        id=story_id,
        title=title,
        description="",
        link=f"https://example.com/{story_id}",
        source_name="Wire",
        source_priority=1,
    )


def test_is_new_returns_true_once():
    store = FingerprintStore()
    story = _story("a")

    async def _run():
        return await store.is_new(story), await store.is_new(story)

    first, second = asyncio.run(_run())
    assert first is True
    assert second is False
    assert "a" in store


def test_concurrent_checks_admit_a_story_once():
    store = FingerprintStore()
    story = _story("a")

    async def _run():
        return await asyncio.gather(*(store.is_new(story) for _ in range(5)))

    results = asyncio.run(_run())
    assert results.count(True) == 1


def test_store_clears_when_over_capacity():
    store = FingerprintStore(max_size=3)
    for story_id in ("a", "b", "c"):
        store.mark_seen(story_id)
    assert len(store) == 3

    store.mark_seen("d")
    assert len(store) == 0
    assert asyncio.run(store.is_new(_story("a"))) is True


def test_store_persists_through_json_store(tmp_path: Path):
    json_store = JsonStore(tmp_path)
    store = FingerprintStore(store=json_store)
    store.mark_seen("a")
    store.mark_seen("b")
    assert store.save() is True
    assert json_store.read(SEEN_STORIES) == ["a", "b"]

    restored = FingerprintStore(store=json_store)
    assert restored.load() == 2
    assert asyncio.run(restored.is_new(_story("a"))) is False


def test_dedup_by_title_drops_near_identical_titles():
    stories = [
        _story("1", "Chiefs trade for star receiver"),
        _story("2", "Chiefs Trade For Star Receiver!"),
        _story("3", "Dodgers clinch division title"),
    ]
    kept, dropped = dedup_by_title(stories, threshold=92)
    assert [story.id for story in kept] == ["1", "3"]
    assert [story.id for story in dropped] == ["2"]


def test_dedup_by_title_keeps_distinct_titles():
    stories = [_story("1", "Yankees win"), _story("2", "Mets lose")]
    kept, dropped = dedup_by_title(stories)
    assert len(kept) == 2
    assert dropped == []
