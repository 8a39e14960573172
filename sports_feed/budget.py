"""
Spend tracking with automatic pause on budget breach.

The BudgetMonitor keeps daily, weekly and monthly spend totals plus raw usage
counters. After every cost it checks the limits in a fixed order:

1. daily >= 100%      -> critical alert, pause the pipeline
2. else daily >= 80%  -> warning alert (once per day)
3. weekly >= 100%     -> critical alert, pause the pipeline
4. monthly >= 100%    -> critical alert, pause the pipeline

Every breach gets its own alert; pausing an already-paused pipeline is a
no-op.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
import logging
from typing import Any, Callable

from .config import BudgetConfig
from .core.types import BudgetSnapshot, PeriodSpend, from_iso, to_iso, utc_now
from .errors import BudgetExceededError
from .logging_utils import log_event
from .notify.alerts import Alerter
from .storage import API_USAGE, DAILY_COSTS, JsonStore
from .workflow import WorkflowController


PERIODS = ("daily", "weekly", "monthly")


class UsageKind(str, Enum):
    API_REQUESTS = "api_requests"
    LLM_TOKENS = "llm_tokens"
    VIDEOS = "videos"
    UPLOADS = "uploads"


class BudgetMonitor:
    """Tracks spend and enforces the configured limits.

    Args:
        config: Limits, unit costs and warning ratio
        store: JsonStore for ``daily-costs.json`` and ``api-usage.json``
        workflow: Paused when a limit is breached
        alerter: Receives warning and critical alerts
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        config: BudgetConfig,
        store: JsonStore,
        workflow: WorkflowController,
        alerter: Alerter,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.store = store
        self.workflow = workflow
        self.alerter = alerter
        self.clock = clock or utc_now
        self.spend = {period: 0.0 for period in PERIODS}
        self.usage = {kind.value: 0.0 for kind in UsageKind}
        self.warning_sent = False
        self.last_updated: datetime | None = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger("sports_feed.budget")

    def limit_for(self, period: str) -> float:
        return float(getattr(self.config, f"{period}_limit"))

    def unit_cost(self, kind: UsageKind) -> float:
        return {
            UsageKind.API_REQUESTS: self.config.cost_per_api_request,
            UsageKind.LLM_TOKENS: self.config.cost_per_llm_token,
            UsageKind.VIDEOS: self.config.cost_per_video,
            UsageKind.UPLOADS: self.config.cost_per_upload,
        }[kind]

    async def load(self) -> None:
        costs = self.store.read(DAILY_COSTS, default={}) or {}
        usage = self.store.read(API_USAGE, default={}) or {}
        for period in PERIODS:
            self.spend[period] = float(costs.get(period, 0.0) or 0.0)
        self.warning_sent = bool(costs.get("warning_sent", False))
        self.last_updated = from_iso(costs.get("last_updated"))
        for kind in UsageKind:
            self.usage[kind.value] = float(usage.get(kind.value, 0.0) or 0.0)
        log_event(
            self.logger,
            "Budget state loaded",
            event="budget_loaded",
            daily=self.spend["daily"],
            weekly=self.spend["weekly"],
            monthly=self.spend["monthly"],
        )

    async def record_usage(self, kind: UsageKind | str, amount: float = 1) -> float:
        """Count usage of a billable resource and add its cost.

        Returns:
            The cost added
        """
        kind = UsageKind(kind)
        if amount < 0:
            raise ValueError("Usage amount must not be negative")
        self.usage[kind.value] += amount
        cost = amount * self.unit_cost(kind)
        await self.add_cost(cost, source=kind.value)
        return cost

    async def add_cost(self, amount: float, source: str = "manual") -> None:
        if amount < 0:
            raise ValueError("Cost amount must not be negative")
        async with self._lock:
            for period in PERIODS:
                self.spend[period] += amount
            self.last_updated = self.clock()
            log_event(
                self.logger,
                "Cost added",
                level=logging.DEBUG,
                event="cost_added",
                amount=amount,
                cost_source=source,
                daily=self.spend["daily"],
            )
            self._save()
            await self._check_limits()

    async def _check_limits(self) -> None:
        daily = self.spend["daily"]
        daily_limit = self.limit_for("daily")
        if daily >= daily_limit:
            await self._breach("daily")
        elif daily >= daily_limit * self.config.warning_ratio and not self.warning_sent:
            self.warning_sent = True
            self._save()
            await self.alerter.alert(
                "warning",
                f"Budget Warning - {int(self.config.warning_ratio * 100)}% Limit Reached",
                f"DAILY_BUDGET_WARNING: Current spend ${daily:.2f} of limit ${daily_limit:.2f}",
                action_taken="No action taken, monitoring continues",
                budget_status=self._spend_summary(),
            )
        for period in ("weekly", "monthly"):
            if self.spend[period] >= self.limit_for(period):
                await self._breach(period)

    async def _breach(self, period: str) -> None:
        current = self.spend[period]
        limit = self.limit_for(period)
        paused = await self.workflow.pause(f"{period}_budget_exceeded")
        await self.alerter.alert(
            "critical",
            "Budget Limit Exceeded - Workflows Paused",
            f"{period.upper()}_BUDGET_EXCEEDED: Current spend ${current:.2f} exceeds limit ${limit:.2f}",
            action_taken="All workflows have been automatically paused",
            budget_status=self._spend_summary(),
            newly_paused=paused,
        )

    def ensure_within_budget(self) -> None:
        """Raise BudgetExceededError if any period is at or over its limit."""
        for period in PERIODS:
            limit = self.limit_for(period)
            if self.spend[period] >= limit:
                raise BudgetExceededError(period, self.spend[period], limit)

    def get_status(self) -> BudgetSnapshot:
        daily = self.spend["daily"]
        daily_limit = self.limit_for("daily")
        if daily < daily_limit * self.config.warning_ratio:
            health = "HEALTHY"
        elif daily < daily_limit:
            health = "WARNING"
        else:
            health = "CRITICAL"
        return BudgetSnapshot(
            daily=PeriodSpend(daily, daily_limit),
            weekly=PeriodSpend(self.spend["weekly"], self.limit_for("weekly")),
            monthly=PeriodSpend(self.spend["monthly"], self.limit_for("monthly")),
            usage=dict(self.usage),
            health=health,
        )

    def reset_daily(self) -> None:
        self.spend["daily"] = 0.0
        self.usage = {kind.value: 0.0 for kind in UsageKind}
        self.warning_sent = False
        self._save()
        log_event(self.logger, "Daily counters reset", event="budget_reset", period="daily")

    def reset_weekly(self) -> None:
        self.spend["weekly"] = 0.0
        self._save()
        log_event(self.logger, "Weekly counters reset", event="budget_reset", period="weekly")

    def reset_monthly(self) -> None:
        self.spend["monthly"] = 0.0
        self._save()
        log_event(self.logger, "Monthly counters reset", event="budget_reset", period="monthly")

    def reset(self, period: str) -> None:
        if period not in PERIODS:
            raise ValueError(f"Unknown budget period: {period}")
        getattr(self, f"reset_{period}")()

    def roll_periods(self, now: datetime | None = None) -> list[str]:
        """Reset every period whose calendar window has ended.

        Returns:
            Names of the periods that were reset
        """
        now = now or self.clock()
        last = self.last_updated
        if last is None:
            self.last_updated = now
            return []
        rolled = []
        if now.date() != last.date():
            self.reset_daily()
            rolled.append("daily")
        if now.isocalendar()[:2] != last.isocalendar()[:2]:
            self.reset_weekly()
            rolled.append("weekly")
        if (now.year, now.month) != (last.year, last.month):
            self.reset_monthly()
            rolled.append("monthly")
        if rolled:
            self.last_updated = now
            self._save()
        return rolled

    def _spend_summary(self) -> dict[str, Any]:
        return {
            period: {"current": round(self.spend[period], 4), "limit": self.limit_for(period)}
            for period in PERIODS
        }

    def _save(self) -> None:
        self.store.write_safely(
            DAILY_COSTS,
            {
                **self.spend,
                "warning_sent": self.warning_sent,
                "last_updated": to_iso(self.last_updated),
            },
        )
        self.store.write_safely(API_USAGE, self.usage)
