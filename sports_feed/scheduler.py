"""
Long-running scheduler and runtime wiring.

``build_runtime`` creates every stateful component once and injects them
into each other. ``Scheduler.run`` then drives independent timers:

- polling cycles every ``poll_interval_seconds``
- retry-queue sweeps every ``retry_interval_seconds``
- a once-a-minute clock tick for the hourly digest (top of the hour),
  the daily digest (``daily_digest_hour`` UTC) and budget period rollover

Every job runs as its own task and its failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from .budget import BudgetMonitor
from .config import AppConfig, SourceConfig
from .core.dedup import FingerprintStore
from .core.types import RawItem, utc_now
from .fetch.fetcher import fetch_feed
from .llm.providers.base import RewriteProvider
from .llm.providers.factory import create_provider
from .logging_utils import log_event
from .notify import Alerter, Notifier, build_notifiers
from .orchestrator import PollingOrchestrator
from .retry import RetryCoordinator
from .storage import JsonStore
from .workflow import WorkflowController


CLOCK_TICK_SECONDS = 60.0

logger = logging.getLogger("sports_feed.scheduler")


@dataclass
class Runtime:
    """Every process-wide component, created once per process."""

    cfg: AppConfig
    store: JsonStore
    client: httpx.AsyncClient
    alerter: Alerter
    workflow: WorkflowController
    budget: BudgetMonitor
    retry: RetryCoordinator
    dedup: FingerprintStore
    rewriter: RewriteProvider | None
    notifiers: list[Notifier]
    orchestrator: PollingOrchestrator

    async def aclose(self) -> None:
        await self.client.aclose()


def build_runtime(cfg: AppConfig, client: httpx.AsyncClient | None = None) -> Runtime:
    """Wire all components from config."""
    store = JsonStore(Path(cfg.storage.state_dir))
    if client is None:
        client = httpx.AsyncClient(
            timeout=cfg.monitoring.fetch_timeout_seconds,
            headers={"User-Agent": cfg.monitoring.user_agent},
            follow_redirects=True,
        )
    alerter = Alerter(cfg.notify.alert_webhook_url, client, cfg.notify.timeout_seconds)
    workflow = WorkflowController(
        store,
        pause_webhook=cfg.budget.pause_webhook_url,
        resume_webhook=cfg.budget.resume_webhook_url,
        client=client,
        timeout=cfg.notify.timeout_seconds,
    )
    budget = BudgetMonitor(cfg.budget, store, workflow, alerter)
    retry = RetryCoordinator(store, alerter, cfg.retry)
    dedup = FingerprintStore(cfg.dedup.max_fingerprints, store)
    rewriter = _build_rewriter(cfg, client)
    notifiers = build_notifiers(cfg.notify, client)

    async def fetcher(source: SourceConfig) -> list[RawItem]:
        return await fetch_feed(source, client, cfg.monitoring.fetch_timeout_seconds)

    orchestrator = PollingOrchestrator(
        cfg,
        fetcher=fetcher,
        rewriter=rewriter,
        notifiers=notifiers,
        dedup=dedup,
        retry=retry,
        budget=budget,
        workflow=workflow,
        store=store,
    )
    return Runtime(
        cfg=cfg,
        store=store,
        client=client,
        alerter=alerter,
        workflow=workflow,
        budget=budget,
        retry=retry,
        dedup=dedup,
        rewriter=rewriter,
        notifiers=notifiers,
        orchestrator=orchestrator,
    )


def _build_rewriter(cfg: AppConfig, client: httpx.AsyncClient | None = None) -> RewriteProvider | None:
    if not cfg.rewrite.enabled:
        return None
    try:
        return create_provider(cfg.provider, client)
    except ValueError as exc:
        log_event(
            logger,
            "Rewrite provider unavailable, using fallback rewrites",
            level=logging.WARNING,
            event="provider_unavailable",
            provider=cfg.provider.name,
            error=str(exc),
        )
        return None


class Scheduler:
    """Runs polling, retry sweeps, digests and budget rollover on timers."""

    def __init__(
        self,
        orchestrator: PollingOrchestrator,
        retry: RetryCoordinator,
        budget: BudgetMonitor,
        cfg: AppConfig,
        clock: Callable[[], datetime] | None = None,
    ):
        self.orchestrator = orchestrator
        self.retry = retry
        self.budget = budget
        self.cfg = cfg
        self.clock = clock or utc_now
        self._tasks: set[asyncio.Task] = set()
        now = self.clock()
        self._last_hourly: tuple[date, int] = (now.date(), now.hour)
        self._last_daily: date | None = None

    async def run(self, stop_event: asyncio.Event) -> None:
        mon = self.cfg.monitoring
        log_event(
            logger,
            "Scheduler started",
            event="scheduler_started",
            poll_interval=mon.poll_interval_seconds,
            retry_interval=mon.retry_interval_seconds,
        )
        loops = [
            asyncio.create_task(self._every(mon.poll_interval_seconds, "poll", self.tick_poll, stop_event)),
            asyncio.create_task(self._every(mon.retry_interval_seconds, "retries", self.tick_retries, stop_event)),
            asyncio.create_task(self._every(CLOCK_TICK_SECONDS, "clock", self.tick_clock, stop_event)),
        ]
        await stop_event.wait()
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        log_event(logger, "Scheduler stopped", event="scheduler_stopped")

    async def _every(
        self,
        interval: float,
        name: str,
        job: Callable[[], Awaitable[Any]],
        stop_event: asyncio.Event,
    ) -> None:
        while not stop_event.is_set():
            self._spawn(name, job)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def _spawn(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        task = asyncio.create_task(self._isolated(name, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _isolated(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        try:
            await job()
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                "Scheduled job failed",
                level=logging.ERROR,
                event="job_failed",
                job=name,
                error=f"{type(exc).__name__}: {exc}",
            )

    async def tick_poll(self) -> None:
        await self.orchestrator.run_cycle()

    async def tick_retries(self) -> None:
        await self.orchestrator.process_retries()

    async def tick_clock(self, now: datetime | None = None) -> dict[str, Any]:
        """Run the time-of-day jobs that are due at ``now``."""
        now = now or self.clock()
        done: dict[str, Any] = {"rolled": self.budget.roll_periods(now)}

        hour_key = (now.date(), now.hour)
        if hour_key != self._last_hourly:
            self._last_hourly = hour_key
            done["hourly"] = await self.orchestrator.flush_digest("hourly", now)

        if now.hour == self.cfg.monitoring.daily_digest_hour and self._last_daily != now.date():
            self._last_daily = now.date()
            done["daily"] = await self.orchestrator.flush_digest("daily", now)
        return done
