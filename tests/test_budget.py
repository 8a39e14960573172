import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sports_feed.budget import BudgetMonitor, UsageKind
from sports_feed.config import BudgetConfig
from sports_feed.errors import BudgetExceededError
from sports_feed.notify.alerts import Alerter
from sports_feed.storage import DAILY_COSTS, JsonStore
from sports_feed.workflow import WorkflowController


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _monitor(tmp_path: Path, config: BudgetConfig | None = None) -> BudgetMonitor:
    store = JsonStore(tmp_path)
    clock = lambda: NOW  # noqa: E731
    workflow = WorkflowController(store, clock=clock)
    return BudgetMonitor(config or BudgetConfig(daily_limit=100.0), store, workflow, Alerter(), clock=clock)


def _levels(monitor: BudgetMonitor) -> list[str]:
    return [alert["level"] for alert in monitor.alerter.history]


def test_warning_fires_once_per_day(tmp_path: Path):
    monitor = _monitor(tmp_path)

    async def _run():
        await monitor.add_cost(50)
        await monitor.add_cost(30)
        await monitor.add_cost(5)

    asyncio.run(_run())

    assert _levels(monitor) == ["WARNING"]
    assert "DAILY_BUDGET_WARNING" in monitor.alerter.history[0]["message"]
    assert monitor.workflow.is_active is True
    assert monitor.get_status().health == "WARNING"


def test_breach_pauses_once_and_alerts_every_time(tmp_path: Path):
    monitor = _monitor(tmp_path)

    async def _run():
        await monitor.add_cost(100)
        await monitor.add_cost(1)

    asyncio.run(_run())

    state = monitor.workflow.get_state()
    assert state.is_active is False
    assert state.pause_reason == "daily_budget_exceeded"
    assert state.pause_count == 1
    assert _levels(monitor) == ["CRITICAL", "CRITICAL"]
    assert monitor.alerter.history[0]["details"]["newly_paused"] is True
    assert monitor.alerter.history[1]["details"]["newly_paused"] is False
    assert monitor.get_status().health == "CRITICAL"


def test_each_breached_period_alerts_in_order(tmp_path: Path):
    monitor = _monitor(tmp_path, BudgetConfig(daily_limit=100.0, weekly_limit=100.0, monthly_limit=1000.0))

    asyncio.run(monitor.add_cost(100))

    messages = [alert["message"] for alert in monitor.alerter.history]
    assert len(messages) == 2
    assert messages[0].startswith("DAILY_BUDGET_EXCEEDED")
    assert messages[1].startswith("WEEKLY_BUDGET_EXCEEDED")
    assert monitor.workflow.get_state().pause_count == 1


def test_negative_amounts_are_rejected(tmp_path: Path):
    monitor = _monitor(tmp_path)
    with pytest.raises(ValueError):
        asyncio.run(monitor.add_cost(-1))
    with pytest.raises(ValueError):
        asyncio.run(monitor.record_usage(UsageKind.API_REQUESTS, -5))
    assert monitor.spend["daily"] == 0.0


def test_record_usage_applies_unit_cost(tmp_path: Path):
    monitor = _monitor(tmp_path)

    async def _run():
        tokens = await monitor.record_usage(UsageKind.LLM_TOKENS, 1000)
        request = await monitor.record_usage("api_requests")
        return tokens, request

    tokens, request = asyncio.run(_run())

    assert tokens == pytest.approx(0.02)
    assert request == pytest.approx(0.001)
    assert monitor.usage["llm_tokens"] == 1000
    assert monitor.usage["api_requests"] == 1
    assert monitor.spend["daily"] == pytest.approx(0.021)
    assert monitor.spend["monthly"] == pytest.approx(0.021)


def test_ensure_within_budget_raises_at_limit(tmp_path: Path):
    monitor = _monitor(tmp_path)
    monitor.ensure_within_budget()
    asyncio.run(monitor.add_cost(100))
    with pytest.raises(BudgetExceededError) as excinfo:
        monitor.ensure_within_budget()
    assert excinfo.value.period == "daily"


def test_reset_daily_clears_day_and_rearms_warning(tmp_path: Path):
    monitor = _monitor(tmp_path)

    async def _run():
        await monitor.record_usage(UsageKind.API_REQUESTS, 10)
        await monitor.add_cost(85)

    asyncio.run(_run())
    assert monitor.warning_sent is True

    monitor.reset_daily()

    assert monitor.spend["daily"] == 0.0
    assert monitor.spend["weekly"] == pytest.approx(85.01)
    assert monitor.usage["api_requests"] == 0
    assert monitor.warning_sent is False


def test_state_survives_restart(tmp_path: Path):
    monitor = _monitor(tmp_path)
    asyncio.run(monitor.add_cost(12.5))
    assert monitor.store.read(DAILY_COSTS)["daily"] == 12.5

    restored = _monitor(tmp_path)
    asyncio.run(restored.load())
    assert restored.spend == monitor.spend
    assert restored.last_updated == NOW


def test_snapshot_percentages(tmp_path: Path):
    monitor = _monitor(tmp_path)
    asyncio.run(monitor.add_cost(25))
    snapshot = monitor.get_status()
    assert snapshot.daily.percentage == pytest.approx(25.0)
    assert snapshot.health == "HEALTHY"
    data = snapshot.to_dict()
    assert data["spending"]["daily"]["current"] == 25
    assert data["budget_health"] == "HEALTHY"


@pytest.mark.parametrize(
    "last, now, expected",
    [
        (datetime(2026, 10, 19, 23, 0), datetime(2026, 10, 20, 0, 30), ["daily"]),
        (datetime(2026, 10, 25, 23, 0), datetime(2026, 10, 26, 0, 30), ["daily", "weekly"]),
        (datetime(2026, 10, 31, 23, 0), datetime(2026, 11, 1, 0, 30), ["daily", "monthly"]),
        (datetime(2026, 10, 19, 8, 0), datetime(2026, 10, 19, 20, 0), []),
    ],
)
def test_roll_periods_follows_calendar(tmp_path: Path, last, now, expected):
    monitor = _monitor(tmp_path)
    monitor.last_updated = last.replace(tzinfo=timezone.utc)
    monitor.spend = {"daily": 5.0, "weekly": 5.0, "monthly": 5.0}

    assert monitor.roll_periods(now.replace(tzinfo=timezone.utc)) == expected
    for period in ("daily", "weekly", "monthly"):
        assert monitor.spend[period] == (0.0 if period in expected else 5.0)
