import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sports_feed.config import RetryConfig
from sports_feed.core.types import FetchOp, NotifyOp, RewriteOp, Severity
from sports_feed.errors import ApiError, ErrorClass
from sports_feed.notify.alerts import Alerter
from sports_feed.retry import (
    Deferred,
    PermanentFailure,
    RetryCoordinator,
    Succeeded,
)
from sports_feed.storage import RETRY_QUEUE, JsonStore


START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _coordinator(tmp_path: Path, config: RetryConfig | None = None, clock: _Clock | None = None):
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    coordinator = RetryCoordinator(
        JsonStore(tmp_path),
        Alerter(),
        config or RetryConfig(),
        clock=clock or _Clock(),
        sleep=sleep,
    )
    return coordinator, delays


def _flaky(failures: int, error: Exception, value="ok"):
    calls = {"count": 0}

    async def perform(op):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error
        return value

    return perform, calls


FETCH = FetchOp(source_name="Wire", url="https://wire.test/rss")


def test_success_after_retries_resolves_the_first_error(tmp_path: Path):
    coordinator, delays = _coordinator(tmp_path)
    perform, calls = _flaky(3, ApiError(503, "unavailable", "wire"))

    result = asyncio.run(coordinator.execute(FETCH, perform))

    assert isinstance(result, Succeeded)
    assert result.value == "ok"
    assert result.attempts == 4
    assert calls["count"] == 4
    assert delays == [1.0, 5.0, 15.0]
    assert len(coordinator.errors) == 1
    assert coordinator.errors[0].resolved is True
    assert coordinator.errors[0].resolved_at == START
    assert list(coordinator.alerter.history) == []


def test_non_retryable_failure_escalates_after_one_attempt(tmp_path: Path):
    coordinator, delays = _coordinator(tmp_path)
    perform, calls = _flaky(10, ApiError(401, "invalid key", "llm"))
    op = RewriteOp(story_id="s1", text="story", style="breaking", target_length="", language="English")

    result = asyncio.run(coordinator.execute(op, perform))

    assert isinstance(result, PermanentFailure)
    assert result.attempts == 1
    assert result.reason.startswith("non_retryable")
    assert calls["count"] == 1
    assert delays == []
    assert coordinator.errors[0].severity == Severity.CRITICAL
    assert coordinator.errors[0].resolved is False
    alerts = list(coordinator.alerter.history)
    assert len(alerts) == 1
    assert alerts[0]["level"] == "CRITICAL"
    assert alerts[0]["details"]["attempts"] == 1


def test_exhausted_retries_record_max_retries_exceeded(tmp_path: Path):
    coordinator, delays = _coordinator(tmp_path)
    perform, calls = _flaky(100, ApiError(503, "unavailable", "wire"))

    result = asyncio.run(coordinator.execute(FETCH, perform))

    assert isinstance(result, PermanentFailure)
    assert result.attempts == 4
    assert calls["count"] == 4
    assert delays == [1.0, 5.0, 15.0]
    assert [record.error_type for record in coordinator.errors] == ["ApiError", "max_retries_exceeded"]
    exhausted = coordinator.errors[1]
    assert exhausted.severity == Severity.CRITICAL
    assert exhausted.context["original_error"] == coordinator.errors[0].id
    assert exhausted.context["attempts"] == 4
    assert coordinator.alerter.history[-1]["title"] == "Max retries exceeded"


def test_last_delay_repeats_once_schedule_runs_out(tmp_path: Path):
    coordinator, delays = _coordinator(tmp_path, RetryConfig(max_retries=5, delays_seconds=[1.0, 5.0, 15.0]))
    perform, _ = _flaky(100, ApiError(500, "oops", "wire"))

    asyncio.run(coordinator.execute(FETCH, perform))

    assert delays == [1.0, 5.0, 15.0, 15.0, 15.0]


def test_error_is_recorded_before_classification(tmp_path: Path):
    coordinator, _ = _coordinator(tmp_path)
    perform, _ = _flaky(1, RuntimeError("boom"))
    seen = []

    def classify(exc, context):
        seen.append(len(coordinator.errors))
        return ErrorClass.NON_RETRYABLE

    asyncio.run(coordinator.execute(FETCH, perform, classify=classify))

    assert seen == [1]


def test_deferred_operation_succeeds_on_a_later_sweep(tmp_path: Path):
    clock = _Clock()
    coordinator, _ = _coordinator(tmp_path, clock=clock)
    op = NotifyOp(sink="discord", subject="s", body="b", story_ids=["s1"])
    perform, _ = _flaky(1, ApiError(503, "unavailable", "discord"))

    result = asyncio.run(coordinator.execute(op, perform, defer=True))

    assert isinstance(result, Deferred)
    task = result.task
    assert task.attempt_count == 1
    assert task.max_attempts == 4
    assert task.next_attempt_at == START + timedelta(seconds=1)
    assert len(coordinator.store.read(RETRY_QUEUE)) == 1

    dispatched = []

    async def dispatch(queued_op):
        dispatched.append(queued_op)

    not_due = asyncio.run(coordinator.process_due(dispatch))
    assert not_due.due == 0

    clock.advance(2)
    report = asyncio.run(coordinator.process_due(dispatch))

    assert report.due == 1
    assert report.succeeded == 1
    assert dispatched == [op]
    assert coordinator.queue == []
    assert coordinator.errors[0].resolved is True
    assert coordinator.store.read(RETRY_QUEUE) == []


def test_deferred_operation_fails_permanently_after_max_attempts(tmp_path: Path):
    clock = _Clock()
    coordinator, _ = _coordinator(tmp_path, clock=clock)
    perform, _ = _flaky(1, ApiError(503, "unavailable", "wire"))
    asyncio.run(coordinator.execute(FETCH, perform, defer=True))

    async def dispatch(queued_op):
        raise ApiError(503, "still unavailable", "wire")

    outcomes = []
    for _ in range(3):
        clock.advance(60)
        outcomes.append(asyncio.run(coordinator.process_due(dispatch)))

    assert [report.rescheduled for report in outcomes] == [1, 1, 0]
    assert outcomes[-1].failed == 1
    assert coordinator.queue == []
    assert coordinator.errors[-1].error_type == "max_retries_exceeded"
    assert coordinator.errors[-1].context["attempts"] == 4
    assert coordinator.alerter.history[-1]["title"] == "Max retries exceeded"


def test_rescheduled_task_uses_backoff_for_its_attempt_count(tmp_path: Path):
    clock = _Clock()
    coordinator, _ = _coordinator(tmp_path, clock=clock)
    perform, _ = _flaky(1, ApiError(503, "unavailable", "wire"))
    task = asyncio.run(coordinator.execute(FETCH, perform, defer=True)).task

    async def dispatch(queued_op):
        raise ApiError(503, "still unavailable", "wire")

    clock.advance(1)
    asyncio.run(coordinator.process_due(dispatch))

    assert task.attempt_count == 2
    assert task.next_attempt_at == clock.now + timedelta(seconds=5)


def test_queue_survives_restart(tmp_path: Path):
    coordinator, _ = _coordinator(tmp_path)
    perform, _ = _flaky(1, ApiError(503, "unavailable", "wire"))
    asyncio.run(coordinator.execute(FETCH, perform, defer=True))

    restored, _ = _coordinator(tmp_path)
    asyncio.run(restored.load())

    assert len(restored.queue) == 1
    assert restored.queue[0].operation == FETCH
    assert len(restored.errors) == 1


def test_stats_and_clear_resolved(tmp_path: Path):
    coordinator, _ = _coordinator(tmp_path)
    ok, _ = _flaky(1, ApiError(503, "unavailable", "wire"))
    bad, _ = _flaky(10, ApiError(401, "invalid key", "wire"))
    asyncio.run(coordinator.execute(FETCH, ok))
    asyncio.run(coordinator.execute(FETCH, bad))

    stats = coordinator.stats()
    assert stats["total_errors"] == 2
    assert stats["resolved_errors"] == 1
    assert stats["unresolved_errors"] == 1
    assert stats["by_severity"]["critical"] == 1

    assert coordinator.clear_resolved() == 1
    assert len(coordinator.errors) == 1
    assert coordinator.errors[0].resolved is False


def test_deferred_failure_with_no_retries_left_is_not_queued(tmp_path: Path):
    clock = _Clock()
    coordinator, _ = _coordinator(tmp_path, RetryConfig(max_retries=0), clock=clock)
    perform, calls = _flaky(10, ApiError(503, "unavailable", "discord"))
    op = NotifyOp(sink="discord", subject="s", body="b")

    result = asyncio.run(coordinator.execute(op, perform, defer=True))

    assert isinstance(result, PermanentFailure)
    assert result.attempts == 1
    assert coordinator.queue == []
    assert coordinator.errors[-1].error_type == "max_retries_exceeded"

    clock.advance(60)
    sweep = asyncio.run(coordinator.process_due(perform))
    assert sweep.due == 0
    assert calls["count"] == 1


def test_retryable_critical_error_alerts_immediately(tmp_path: Path):
    coordinator, _ = _coordinator(tmp_path)
    perform, _ = _flaky(1, ApiError(429, "insufficient_quota", "llm"))
    op = RewriteOp(story_id="s1", text="story", style="breaking", target_length="", language="English")

    result = asyncio.run(coordinator.execute(op, perform))

    assert isinstance(result, Succeeded)
    assert coordinator.errors[0].severity == Severity.CRITICAL
    alerts = list(coordinator.alerter.history)
    assert [alert["title"] for alert in alerts] == ["Critical error"]
    assert alerts[0]["details"]["error_id"] == coordinator.errors[0].id


def test_pending_for_finds_the_queued_operation(tmp_path: Path):
    coordinator, _ = _coordinator(tmp_path)
    perform, _ = _flaky(1, ApiError(503, "unavailable", "wire"))
    task = asyncio.run(coordinator.execute(FETCH, perform, defer=True)).task

    assert coordinator.pending_for(FetchOp(source_name="Wire", url="https://wire.test/rss")) is task
    assert coordinator.pending_for(FetchOp(source_name="Other", url="https://other.test/rss")) is None
