"""
Polling cycle orchestration.

One cycle runs these phases in order:
1. Fetch every source concurrently (each through the retry coordinator)
2. Dedup: fingerprint check-and-mark, then fuzzy title dedup
3. Score and categorize new stories
4. Route by score: immediate, hourly digest, daily digest or discard
5. Process routed stories with bounded concurrency: rewrite, then notify
   or queue on a digest

A second cycle started while one is running is skipped. One failing source
or story never aborts the rest of the cycle.

A source whose fetch fails with a retryable error is handed to the retry
queue and skipped until that retry finishes. Items a queued fetch recovers
are parked and ingested by the next cycle, so dedup state and the backlog
are only touched inside a cycle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from typing import Any, Awaitable, Callable

from .budget import BudgetMonitor, UsageKind
from .config import AppConfig, SourceConfig
from .core.dedup import FingerprintStore, dedup_by_title
from .core.scoring import is_breaking, score_story
from .core.text import story_fingerprint
from .core.types import (
    FetchOp,
    NotifyOp,
    Operation,
    RawItem,
    RewriteOp,
    Route,
    Story,
    UploadOp,
    utc_now,
)
from .errors import BudgetExceededError, ConfigError, PipelinePausedError
from .llm.prompts import fallback_rewrites, originality_score
from .llm.providers.base import RewriteProvider, RewriteResult
from .logging_utils import log_event
from .notify.base import Notification, Notifier
from .notify.render import render_breaking, render_digest
from .retry import Deferred, PermanentFailure, RetryCoordinator, Succeeded
from .storage import DIGESTS, JsonStore, StoryLog
from .workflow import WorkflowController


Fetcher = Callable[[SourceConfig], Awaitable[list[RawItem]]]

DIGEST_KINDS = ("hourly", "daily")


class CyclePhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DEDUPING = "deduping"
    SCORING = "scoring"
    ROUTING = "routing"
    PROCESSING = "processing"


@dataclass
class CycleReport:
    """Counters for one polling cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    fetched: int = 0
    new: int = 0
    duplicates: int = 0
    processed: int = 0
    deferred: int = 0
    discarded: int = 0
    held: int = 0
    notified: int = 0
    errors: int = 0
    routed: dict[str, int] = field(default_factory=lambda: {route.value: 0 for route in Route})
    failed_sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "fetched": self.fetched,
            "new": self.new,
            "duplicates": self.duplicates,
            "processed": self.processed,
            "deferred": self.deferred,
            "discarded": self.discarded,
            "held": self.held,
            "notified": self.notified,
            "errors": self.errors,
            "routed": dict(self.routed),
            "failed_sources": list(self.failed_sources),
        }


class PollingOrchestrator:
    """Drives polling cycles and digest flushes.

    All shared state (dedup set, retry queue, budget ledger, workflow flag)
    is owned by the collaborators passed in.
    """

    def __init__(
        self,
        cfg: AppConfig,
        fetcher: Fetcher,
        rewriter: RewriteProvider | None,
        notifiers: list[Notifier],
        dedup: FingerprintStore,
        retry: RetryCoordinator,
        budget: BudgetMonitor,
        workflow: WorkflowController,
        store: JsonStore,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cfg = cfg
        self.sources = sorted(cfg.sources, key=lambda source: source.priority)
        self.fetcher = fetcher
        self.rewriter = rewriter
        self.notifiers = notifiers
        self.dedup = dedup
        self.retry = retry
        self.budget = budget
        self.workflow = workflow
        self.store = store
        self.clock = clock or utc_now
        self.sleep = sleep
        self.story_log = StoryLog(store, cfg.storage.story_log_cap)
        self.backlog: list[Story] = []
        self.recovered: list[tuple[SourceConfig, list[RawItem]]] = []
        self.digests: dict[str, list[Story]] = {kind: [] for kind in DIGEST_KINDS}
        self.phase = CyclePhase.IDLE
        self.last_report: CycleReport | None = None
        self._running = False
        self.logger = logging.getLogger("sports_feed.orchestrator")

    async def load(self) -> None:
        """Restore all persisted state before the first cycle."""
        await self.retry.load()
        await self.budget.load()
        self.workflow.load()
        if self.cfg.dedup.persist:
            self.dedup.load()
        data = self.store.read(DIGESTS, default={}) or {}
        for kind in DIGEST_KINDS:
            self.digests[kind] = [Story.from_dict(item) for item in data.get(kind) or []]
        self.backlog = [Story.from_dict(item) for item in data.get("backlog") or []]

    # Cycle

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleReport | None:
        """Run one polling cycle.

        Returns:
            The cycle report, or None if a cycle was already running
        """
        if self._running:
            log_event(self.logger, "Cycle skipped, previous cycle still running", event="cycle_skipped")
            return None
        self._running = True
        try:
            report = await self._run_cycle()
        finally:
            self._running = False
            self.phase = CyclePhase.IDLE
        self.last_report = report
        return report

    async def _run_cycle(self) -> CycleReport:
        now = self.clock()
        report = CycleReport(started_at=now)
        log_event(self.logger, "Cycle start", event="cycle_start", sources=len(self.sources))

        self.phase = CyclePhase.FETCHING
        results = await asyncio.gather(*(self._fetch_source(source) for source in self.sources))

        candidates: list[Story] = []
        for source, items in results:
            if items is None:
                report.failed_sources.append(source.name)
                continue
            report.fetched += len(items)
            candidates.extend(build_story(source, item) for item in items)
        recovered, self.recovered = self.recovered, []
        for source, items in recovered:
            report.fetched += len(items)
            candidates.extend(build_story(source, item) for item in items)

        self.phase = CyclePhase.DEDUPING
        fresh = await self._dedup(candidates, report)

        self.phase = CyclePhase.SCORING
        scored = self._score(fresh, now)

        self.phase = CyclePhase.ROUTING
        batch = self._route(scored, now, report)

        self.phase = CyclePhase.PROCESSING
        await self._process_batch(batch, report)

        self.story_log.append([story for story in batch if story.processed_at is not None])
        self._save_queues()
        report.finished_at = self.clock()
        log_event(self.logger, "Cycle finished", event="cycle_finished", **report.to_dict())
        return report

    async def _fetch_source(self, source: SourceConfig) -> tuple[SourceConfig, list[RawItem] | None]:
        op = FetchOp(source_name=source.name, url=source.url)
        pending = self.retry.pending_for(op)
        if pending is not None:
            log_event(
                self.logger,
                "Source backing off",
                event="source_backoff",
                source=source.name,
                next_attempt_at=pending.next_attempt_at.isoformat(),
            )
            return source, None
        result = await self.retry.execute(op, self._perform_fetch, context={"source": source.name}, defer=True)
        if isinstance(result, Succeeded):
            return source, result.value
        log_event(
            self.logger,
            "Source failed",
            level=logging.WARNING,
            event="source_failed",
            source=source.name,
            reason=result.reason if isinstance(result, PermanentFailure) else "retry_scheduled",
        )
        return source, None

    async def _dedup(self, candidates: list[Story], report: CycleReport) -> list[Story]:
        fresh: list[Story] = []
        for story in candidates:
            if await self.dedup.is_new(story):
                fresh.append(story)
            else:
                report.duplicates += 1
        if self.cfg.dedup.title_dedup:
            fresh, dropped = dedup_by_title(fresh, self.cfg.dedup.title_similarity_threshold)
            report.duplicates += len(dropped)
        if self.cfg.dedup.persist:
            self.dedup.save()
        report.new = len(fresh)
        return fresh

    def _score(self, stories: list[Story], now: datetime) -> list[Story]:
        scored = []
        for story in stories:
            score, category = score_story(story, now)
            story = story.with_score(score, category)
            if is_breaking(story.title, story.description, self.cfg.monitoring.monitor_keywords):
                log_event(
                    self.logger,
                    "Breaking news detected",
                    event="breaking_detected",
                    story_id=story.id,
                    title=story.title,
                    urgency=score,
                )
            scored.append(story)
        return scored

    def _route(self, scored: list[Story], now: datetime, report: CycleReport) -> list[Story]:
        """Assign routes and apply the per-cycle cap.

        Backlog stories from earlier cycles go first, then new stories by
        score. Whatever exceeds the cap waits for the next cycle.
        """
        routed: list[Story] = []
        for story in scored:
            story.route = self.route_for(story.urgency_score or 0.0, now)
            if story.route == Route.DISCARD:
                report.discarded += 1
                report.routed[Route.DISCARD.value] += 1
                continue
            routed.append(story)
        routed.sort(key=lambda s: s.urgency_score or 0.0, reverse=True)
        queue = self.backlog + routed
        cap = self.cfg.monitoring.max_stories_per_cycle
        batch, self.backlog = queue[:cap], queue[cap:]
        report.deferred = len(self.backlog)
        if self.backlog:
            log_event(
                self.logger,
                "Stories held for next cycle",
                event="cycle_cap_reached",
                held=len(self.backlog),
                cap=cap,
            )
        return batch

    def route_for(self, score: float, now: datetime) -> Route:
        mon = self.cfg.monitoring
        if score >= mon.breaking_threshold:
            if self.is_quiet_hours(now) and score < mon.quiet_hours_override:
                return Route.HOURLY
            return Route.IMMEDIATE
        if score >= mon.trending_threshold:
            return Route.HOURLY
        if score >= mon.watching_threshold:
            return Route.DAILY
        return Route.DISCARD

    def is_quiet_hours(self, now: datetime) -> bool:
        mon = self.cfg.monitoring
        if not mon.quiet_hours_enabled:
            return False
        hour = now.hour
        if mon.quiet_hours_start > mon.quiet_hours_end:
            return hour >= mon.quiet_hours_start or hour < mon.quiet_hours_end
        return mon.quiet_hours_start <= hour < mon.quiet_hours_end

    # Story processing

    async def _process_batch(self, batch: list[Story], report: CycleReport) -> None:
        semaphore = asyncio.Semaphore(max(1, self.cfg.monitoring.story_concurrency))

        async def _guarded(story: Story) -> None:
            async with semaphore:
                try:
                    await self._process_story(story, report)
                except Exception as exc:  # noqa: BLE001
                    report.errors += 1
                    log_event(
                        self.logger,
                        "Story processing failed",
                        level=logging.ERROR,
                        event="story_failed",
                        story_id=story.id,
                        title=story.title,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                await self.sleep(self.cfg.monitoring.inter_story_delay_seconds)

        await asyncio.gather(*(_guarded(story) for story in batch))

    async def _process_story(self, story: Story, report: CycleReport) -> None:
        route = story.route or Route.DISCARD
        report.routed[route.value] += 1

        if not self._can_spend():
            self._hold(story, report)
            return

        story.attach_rewrites(await self._rewrite(story))
        story.processed_at = self.clock()
        report.processed += 1

        if route == Route.IMMEDIATE:
            if not self.workflow.is_active:
                self._hold(story, report)
                return
            if await self._notify_all(render_breaking(story)):
                report.notified += 1
        else:
            self._queue_digest(route.value, story)

    def _can_spend(self) -> bool:
        if not self.workflow.is_active:
            return False
        try:
            self.budget.ensure_within_budget()
        except BudgetExceededError:
            return False
        return True

    def _hold(self, story: Story, report: CycleReport) -> None:
        """Queue a story on a digest while costly work is not allowed."""
        kind = Route.DAILY.value if story.route == Route.DAILY else Route.HOURLY.value
        story.attach_rewrites(fallback_rewrites(story.title, story.description, self.cfg.rewrite.styles))
        story.processed_at = self.clock()
        self._queue_digest(kind, story)
        report.held += 1
        log_event(
            self.logger,
            "Story held on digest while paused",
            event="story_held",
            story_id=story.id,
            digest=kind,
            pause_reason=self.workflow.get_state().pause_reason,
        )

    def _queue_digest(self, kind: str, story: Story) -> None:
        if any(existing.id == story.id for existing in self.digests[kind]):
            return
        self.digests[kind].append(story)

    async def _rewrite(self, story: Story) -> dict[str, str]:
        styles = self.cfg.rewrite.styles
        fallback = fallback_rewrites(story.title, story.description, styles)
        if self.rewriter is None or not self.cfg.rewrite.enabled:
            return fallback

        text = f"{story.title}. {story.description}".strip()
        rewrites: dict[str, str] = {}
        for style in styles:
            if not self._can_spend():
                rewrites[style] = fallback[style]
                continue
            op = RewriteOp(
                story_id=story.id,
                text=text,
                style=style,
                target_length="",
                language=self.cfg.rewrite.language,
            )
            result = await self.retry.execute(op, self._perform_rewrite, context={"story_id": story.id})
            if isinstance(result, Succeeded):
                rewrites[style] = result.value.text
                score = originality_score(text, result.value.text)
                if score < self.cfg.rewrite.target_originality:
                    log_event(
                        self.logger,
                        "Rewrite below originality target",
                        level=logging.WARNING,
                        event="rewrite_low_originality",
                        story_id=story.id,
                        style=style,
                        originality=score,
                    )
            else:
                rewrites[style] = fallback[style]
        return rewrites

    async def _notify_all(self, message: Notification) -> bool:
        """Send a message through every sink.

        Returns True if at least one sink delivered it or queued a retry.
        """
        if not self.notifiers:
            log_event(self.logger, "No notification sinks configured", event="notify_no_sinks")
            return False
        delivered = False
        for notifier in self.notifiers:
            op = NotifyOp(
                sink=notifier.name,
                subject=message.subject,
                body=message.body,
                story_ids=list(message.story_ids),
                html=message.html,
                link=message.link,
            )
            result = await self.retry.execute(
                op,
                lambda _op, n=notifier: n.notify(message),
                context={"sink": notifier.name},
                defer=True,
            )
            if isinstance(result, (Succeeded, Deferred)):
                delivered = True
        return delivered

    # Digests

    async def flush_digest(self, kind: str, now: datetime | None = None) -> int:
        """Send a digest and clear it.

        Returns:
            Number of stories sent, 0 when skipped
        """
        if kind not in DIGEST_KINDS:
            raise ValueError(f"Unknown digest: {kind}")
        now = now or self.clock()
        stories = self.digests[kind]
        if not stories:
            return 0
        if not self.workflow.is_active:
            log_event(self.logger, "Digest skipped while paused", event="digest_skipped", digest=kind, reason="paused")
            return 0
        if kind == "hourly" and self.is_quiet_hours(now):
            log_event(self.logger, "Digest skipped in quiet hours", event="digest_skipped", digest=kind, reason="quiet_hours")
            return 0

        count = len(stories)
        sent = await self._notify_all(render_digest(kind, stories))
        if self.notifiers and not sent:
            log_event(
                self.logger,
                "Digest delivery failed, keeping stories",
                level=logging.WARNING,
                event="digest_failed",
                digest=kind,
                stories=count,
            )
            return 0
        self.digests[kind] = []
        self._save_queues()
        log_event(self.logger, "Digest sent", event="digest_sent", digest=kind, stories=count)
        return count

    def _save_queues(self) -> None:
        """Persist digests and the capped-cycle backlog.

        Backlog stories are already marked seen, so losing them on restart
        would drop them for good.
        """
        data = {kind: [story.to_dict() for story in stories] for kind, stories in self.digests.items()}
        data["backlog"] = [story.to_dict() for story in self.backlog]
        self.store.write_safely(DIGESTS, data)

    # External operations

    async def _perform_fetch(self, op: FetchOp) -> list[RawItem]:
        source = self._source_named(op.source_name)
        items = await self.fetcher(source)
        await self.budget.record_usage(UsageKind.API_REQUESTS)
        return items

    async def _perform_rewrite(self, op: RewriteOp) -> RewriteResult:
        if self.rewriter is None:
            raise ConfigError("No rewrite provider configured")
        if not self.workflow.is_active:
            raise PipelinePausedError("Pipeline is paused")
        self.budget.ensure_within_budget()
        result = await self.rewriter.rewrite(op.text, op.style, op.target_length or None, op.language)
        await self.budget.record_usage(UsageKind.API_REQUESTS)
        if result.tokens:
            await self.budget.record_usage(UsageKind.LLM_TOKENS, result.tokens)
        return result

    async def _perform_notify(self, op: NotifyOp) -> None:
        for notifier in self.notifiers:
            if notifier.name == op.sink:
                await notifier.notify(
                    Notification(
                        subject=op.subject,
                        body=op.body,
                        html=op.html,
                        story_ids=list(op.story_ids),
                        link=op.link,
                    )
                )
                return
        raise ConfigError(f"Notification sink not configured: {op.sink}")

    async def dispatch(self, op: Operation) -> Any:
        """Carry out a queued operation; used by the retry sweep."""
        match op:
            case FetchOp():
                items = await self._perform_fetch(op)
                self.recovered.append((self._source_named(op.source_name), items))
                log_event(
                    self.logger,
                    "Source recovered",
                    event="source_recovered",
                    source=op.source_name,
                    items=len(items),
                )
                return items
            case RewriteOp():
                return await self._perform_rewrite(op)
            case NotifyOp():
                return await self._perform_notify(op)
            case UploadOp():
                raise ConfigError(f"No upload target configured for {op.target}")
        raise ValueError(f"Unknown operation: {op!r}")

    async def process_retries(self) -> dict[str, int]:
        report = await self.retry.process_due(self.dispatch)
        return {
            "due": report.due,
            "succeeded": report.succeeded,
            "rescheduled": report.rescheduled,
            "failed": report.failed,
        }

    def _source_named(self, name: str) -> SourceConfig:
        for source in self.sources:
            if source.name == name:
                return source
        raise ConfigError(f"Unknown source: {name}")

    # Status

    def status(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "running": self._running,
            "dedup_size": len(self.dedup),
            "backlog": len(self.backlog),
            "digests": {kind: len(stories) for kind, stories in self.digests.items()},
            "budget": self.budget.get_status().to_dict(),
            "workflow": self.workflow.get_state().to_dict(),
            "errors": self.retry.stats(),
            "last_cycle": self.last_report.to_dict() if self.last_report else None,
        }


def build_story(source: SourceConfig, item: RawItem) -> Story:
    return Story(
        id=story_fingerprint(source.name, item.guid, item.title, item.link),
        title=item.title,
        description=item.description,
        link=item.link,
        source_name=source.name,
        source_priority=source.priority,
        published_at=item.published_at,
        guid=item.guid,
    )
