import asyncio
from datetime import datetime, timezone
from pathlib import Path

import httpx

from sports_feed.config import AppConfig, SourceConfig
from sports_feed.core.types import Category, Route, Story
from sports_feed.notify.base import Notification, Notifier
from sports_feed.scheduler import Scheduler, build_runtime


class _Sink(Notifier):
    name = "sink"

    def __init__(self):
        self.sent: list[Notification] = []

    async def notify(self, message: Notification) -> None:
        self.sent.append(message)


def _config(tmp_path: Path) -> AppConfig:
    cfg = AppConfig()
    cfg.sources = [SourceConfig("Test Wire", "https://wire.test/rss", 1)]
    cfg.storage.state_dir = str(tmp_path)
    cfg.rewrite.enabled = False
    cfg.monitoring.quiet_hours_enabled = False
    return cfg


def _empty_feed(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b'<rss version="2.0"><channel><title>t</title></channel></rss>')


def _story(story_id: str) -> Story:
    return Story(
        id=story_id,
        title=f"Story {story_id}",
        description="",
        link=f"https://wire.test/{story_id}",
        source_name="Test Wire",
        source_priority=1,
        urgency_score=7.0,
        category=Category.GENERAL,
        route=Route.HOURLY,
    )


def _at(hour: int, minute: int = 0, day: int = 19) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


def test_build_runtime_wires_components(tmp_path: Path):
    async def _run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(_empty_feed))
        runtime = build_runtime(_config(tmp_path), client)
        try:
            report = await runtime.orchestrator.run_cycle()
        finally:
            await runtime.aclose()
        return runtime, report

    runtime, report = asyncio.run(_run())

    assert runtime.rewriter is None
    assert runtime.notifiers == []
    assert runtime.orchestrator.budget is runtime.budget
    assert runtime.budget.workflow is runtime.workflow
    assert report.fetched == 0
    assert report.failed_sources == []


def test_clock_tick_flushes_hourly_and_daily_digests(tmp_path: Path):
    async def _run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(_empty_feed))
        runtime = build_runtime(_config(tmp_path), client)
        sink = _Sink()
        runtime.orchestrator.notifiers.append(sink)
        scheduler = Scheduler(
            runtime.orchestrator,
            runtime.retry,
            runtime.budget,
            runtime.cfg,
            clock=lambda: _at(7, 30),
        )
        try:
            runtime.orchestrator.digests["hourly"].append(_story("a"))
            same_hour = await scheduler.tick_clock(_at(7, 45))
            new_hour = await scheduler.tick_clock(_at(8, 0))
            runtime.orchestrator.digests["daily"].append(_story("b"))
            later = await scheduler.tick_clock(_at(8, 1))
        finally:
            await runtime.aclose()
        return same_hour, new_hour, later, sink

    same_hour, new_hour, later, sink = asyncio.run(_run())

    assert "hourly" not in same_hour
    assert new_hour["hourly"] == 1
    assert new_hour["daily"] == 0
    assert "daily" not in later
    assert [message.subject for message in sink.sent] == ["Hourly Sports Digest: 1 stories"]


def test_clock_tick_rolls_budget_periods(tmp_path: Path):
    async def _run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(_empty_feed))
        runtime = build_runtime(_config(tmp_path), client)
        scheduler = Scheduler(runtime.orchestrator, runtime.retry, runtime.budget, runtime.cfg, clock=lambda: _at(23))
        try:
            await runtime.budget.add_cost(10)
            runtime.budget.last_updated = _at(23)
            done = await scheduler.tick_clock(_at(0, 5, day=20))
        finally:
            await runtime.aclose()
        return done, runtime.budget

    done, budget = asyncio.run(_run())

    assert done["rolled"] == ["daily"]
    assert budget.spend["daily"] == 0.0
    assert budget.spend["weekly"] == 10.0


def test_run_stops_when_event_is_set(tmp_path: Path):
    async def _run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(_empty_feed))
        runtime = build_runtime(_config(tmp_path), client)
        scheduler = Scheduler(runtime.orchestrator, runtime.retry, runtime.budget, runtime.cfg)
        stop = asyncio.Event()
        try:
            task = asyncio.create_task(scheduler.run(stop))
            await asyncio.sleep(0.05)
            stop.set()
            await asyncio.wait_for(task, timeout=5)
        finally:
            await runtime.aclose()
        return runtime.orchestrator.last_report

    report = asyncio.run(_run())
    assert report is not None
    assert report.fetched == 0
