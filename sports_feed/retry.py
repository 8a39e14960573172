"""
Retry coordination for external operations.

Every external call (feed fetch, rewrite, notification, upload) runs through
the RetryCoordinator, which:
1. Records an ErrorRecord for the first failure before deciding anything
2. Classifies the failure as retryable or not
3. Retries retryable failures on a fixed backoff schedule, either inline or
   through the persisted retry queue
4. Escalates permanent failures to the alerter. Critical errors that are
   still being retried (e.g. an exhausted quota) are alerted at once

Task lifecycle:

    pending -> attempting -> succeeded
                          -> pending (rescheduled)
                          -> permanently_failed
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Awaitable, Callable

from .config import RetryConfig
from .core.types import (
    ErrorRecord,
    Operation,
    RetryTask,
    Severity,
    TaskStatus,
    new_id,
    utc_now,
)
from .errors import ErrorClass, classify_error, determine_severity
from .logging_utils import log_event
from .notify.alerts import Alerter
from .storage import ERROR_LOG, RETRY_QUEUE, JsonStore


Perform = Callable[[Operation], Awaitable[Any]]
Classifier = Callable[[BaseException, dict[str, Any]], ErrorClass]


@dataclass
class Succeeded:
    value: Any
    attempts: int = 1


@dataclass
class PermanentFailure:
    error: ErrorRecord
    reason: str
    attempts: int


@dataclass
class Deferred:
    task: RetryTask
    error: ErrorRecord


Result = Succeeded | PermanentFailure | Deferred


@dataclass
class SweepReport:
    due: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0


class RetryCoordinator:
    """Runs operations with retry, backoff and escalation.

    Args:
        store: JsonStore for the error log and retry queue
        alerter: Receives escalation alerts
        config: Retry budget and backoff schedule
        clock: Returns the current UTC time
        sleep: Awaitable used between inline attempts
    """

    def __init__(
        self,
        store: JsonStore,
        alerter: Alerter,
        config: RetryConfig,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.alerter = alerter
        self.config = config
        self.clock = clock or utc_now
        self.sleep = sleep
        self.errors: list[ErrorRecord] = []
        self.queue: list[RetryTask] = []
        self._sweep_lock = asyncio.Lock()
        self.logger = logging.getLogger("sports_feed.retry")

    @property
    def max_attempts(self) -> int:
        return self.config.max_retries + 1

    def delay_for(self, failures: int) -> float:
        """Backoff before the next attempt, given how many attempts failed.

        The last delay in the schedule repeats once the schedule runs out.
        """
        schedule = self.config.delays_seconds or [0.0]
        index = min(max(failures - 1, 0), len(schedule) - 1)
        return float(schedule[index])

    async def load(self) -> None:
        """Restore the error log and retry queue from disk."""
        errors = self.store.read(ERROR_LOG, default=[]) or []
        queue = self.store.read(RETRY_QUEUE, default=[]) or []
        self.errors = [ErrorRecord.from_dict(item) for item in errors]
        self.queue = []
        for item in queue:
            try:
                task = RetryTask.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                log_event(
                    self.logger,
                    "Dropping unreadable retry task",
                    level=logging.WARNING,
                    event="retry_task_unreadable",
                    error=str(exc),
                )
                continue
            if not task.is_terminal:
                self.queue.append(task)
        log_event(
            self.logger,
            "Retry state loaded",
            event="retry_state_loaded",
            errors=len(self.errors),
            pending=len(self.queue),
        )

    async def record_error(
        self,
        exc: BaseException,
        operation: str | None,
        context: dict[str, Any] | None = None,
        error_type: str | None = None,
    ) -> ErrorRecord:
        context = dict(context or {})
        record = ErrorRecord(
            id=new_id(),
            timestamp=self.clock(),
            message=str(exc) or type(exc).__name__,
            error_type=error_type or type(exc).__name__,
            severity=determine_severity(exc, {"operation": operation, **context}),
            operation=operation,
            context=context,
        )
        self.errors.append(record)
        self._save_errors()
        log_event(
            self.logger,
            "Error recorded",
            level=logging.WARNING,
            event="error_recorded",
            error_id=record.id,
            operation=operation,
            severity=record.severity.value,
            error=record.message,
        )
        return record

    def resolve_error(self, error_id: str | None) -> bool:
        if not error_id:
            return False
        for record in self.errors:
            if record.id == error_id:
                changed = record.resolve(self.clock())
                if changed:
                    self._save_errors()
                    log_event(self.logger, "Error resolved", event="error_resolved", error_id=error_id)
                return changed
        return False

    async def execute(
        self,
        op: Operation,
        perform: Perform,
        classify: Classifier = classify_error,
        context: dict[str, Any] | None = None,
        defer: bool = False,
    ) -> Result:
        """Run an operation until it succeeds or fails permanently.

        Args:
            op: Typed operation payload
            perform: Coroutine function that carries out the operation
            classify: Maps an exception to an ErrorClass
            context: Extra fields stored on the error record
            defer: Hand retryable failures to the retry queue instead of
                   retrying inline

        Returns:
            Succeeded, PermanentFailure, or Deferred when ``defer`` is set
        """
        ctx = {"operation": op.kind.value, **(context or {})}
        first_error: ErrorRecord | None = None
        attempt = 0

        while True:
            attempt += 1
            try:
                value = await perform(op)
            except Exception as exc:  # noqa: BLE001
                if first_error is None:
                    first_error = await self.record_error(exc, op.kind.value, context)
                verdict = classify(exc, ctx)
                if verdict != ErrorClass.RETRYABLE:
                    return await self._fail(op, first_error, attempt, f"{verdict.value}: {exc}")
                if attempt == 1:
                    await self._alert_if_critical(op, first_error)
                if attempt >= self.max_attempts:
                    return await self._exhausted(op, first_error, attempt, exc)
                if defer:
                    task = await self.schedule(op, exc, context, error=first_error)
                    return Deferred(task, first_error)
                delay = self.delay_for(attempt)
                log_event(
                    self.logger,
                    "Retrying operation",
                    event="retry_inline",
                    operation=op.kind.value,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self.sleep(delay)
                continue

            if first_error is not None:
                self.resolve_error(first_error.id)
            return Succeeded(value, attempt)

    async def schedule(
        self,
        op: Operation,
        exc: BaseException,
        context: dict[str, Any] | None = None,
        error: ErrorRecord | None = None,
    ) -> RetryTask:
        """Queue a failed operation for a later attempt."""
        if error is None:
            error = await self.record_error(exc, op.kind.value, context)
            await self._alert_if_critical(op, error)
        now = self.clock()
        task = RetryTask(
            id=new_id(),
            operation=op,
            max_attempts=self.max_attempts,
            next_attempt_at=now + timedelta(seconds=self.delay_for(1)),
            attempt_count=1,
            error_id=error.id,
            created_at=now,
            last_error=str(exc),
            context=dict(context or {}),
        )
        self.queue.append(task)
        self._save_queue()
        log_event(
            self.logger,
            "Retry scheduled",
            event="retry_scheduled",
            task_id=task.id,
            operation=task.operation_name,
            next_attempt_at=task.next_attempt_at.isoformat(),
        )
        return task

    async def process_due(
        self,
        dispatch: Perform,
        classify: Classifier = classify_error,
    ) -> SweepReport:
        """Attempt every queued task whose time has come."""
        report = SweepReport()
        async with self._sweep_lock:
            now = self.clock()
            due = [
                task
                for task in self.queue
                if task.status == TaskStatus.PENDING and task.next_attempt_at <= now
            ]
            report.due = len(due)
            for task in due:
                await self._attempt_task(task, dispatch, classify, report)
            self.queue = [task for task in self.queue if not task.is_terminal]
            self._save_queue()
        if report.due:
            log_event(
                self.logger,
                "Retry sweep finished",
                event="retry_sweep",
                due=report.due,
                succeeded=report.succeeded,
                rescheduled=report.rescheduled,
                failed=report.failed,
            )
        return report

    async def _attempt_task(
        self,
        task: RetryTask,
        dispatch: Perform,
        classify: Classifier,
        report: SweepReport,
    ) -> None:
        task.status = TaskStatus.ATTEMPTING
        ctx = {"operation": task.operation_name, **task.context}
        try:
            await dispatch(task.operation)
        except Exception as exc:  # noqa: BLE001
            task.attempt_count += 1
            task.last_error = str(exc)
            verdict = classify(exc, ctx)
            error = self._find_error(task.error_id)
            if verdict != ErrorClass.RETRYABLE:
                task.status = TaskStatus.PERMANENTLY_FAILED
                report.failed += 1
                if error is not None:
                    await self._escalate(task.operation, error, task.attempt_count, f"{verdict.value}: {exc}")
                return
            if task.attempt_count >= task.max_attempts:
                task.status = TaskStatus.PERMANENTLY_FAILED
                report.failed += 1
                await self._record_exhaustion(task.operation, task.error_id, task.attempt_count, exc, task.id)
                return
            task.status = TaskStatus.PENDING
            task.next_attempt_at = self.clock() + timedelta(seconds=self.delay_for(task.attempt_count))
            report.rescheduled += 1
            log_event(
                self.logger,
                "Retry rescheduled",
                event="retry_rescheduled",
                task_id=task.id,
                operation=task.operation_name,
                attempt=task.attempt_count,
                next_attempt_at=task.next_attempt_at.isoformat(),
            )
            return

        task.status = TaskStatus.SUCCEEDED
        report.succeeded += 1
        self.resolve_error(task.error_id)
        log_event(
            self.logger,
            "Retry succeeded",
            event="retry_succeeded",
            task_id=task.id,
            operation=task.operation_name,
            attempt=task.attempt_count + 1,
        )

    async def _alert_if_critical(self, op: Operation, error: ErrorRecord) -> None:
        """Alert right away on a critical error that is still being retried."""
        if error.severity != Severity.CRITICAL:
            return
        await self.alerter.alert(
            "critical",
            "Critical error",
            f"{op.kind.value} failed: {error.message}",
            action_taken="Retrying",
            operation=op.kind.value,
            error_id=error.id,
            error_type=error.error_type,
        )

    async def _fail(self, op: Operation, error: ErrorRecord, attempts: int, reason: str) -> PermanentFailure:
        await self._escalate(op, error, attempts, reason)
        return PermanentFailure(error, reason, attempts)

    async def _exhausted(
        self,
        op: Operation,
        error: ErrorRecord,
        attempts: int,
        exc: BaseException,
    ) -> PermanentFailure:
        await self._record_exhaustion(op, error.id, attempts, exc)
        return PermanentFailure(error, f"max_retries_exceeded: {exc}", attempts)

    async def _record_exhaustion(
        self,
        op: Operation,
        error_id: str | None,
        attempts: int,
        exc: BaseException,
        task_id: str | None = None,
    ) -> None:
        await self.alerter.alert(
            "critical",
            "Max retries exceeded",
            f"{op.kind.value} failed after {attempts} attempts: {exc}",
            action_taken="Operation abandoned; manual follow-up required",
            operation=op.kind.value,
            attempts=attempts,
            original_error=error_id,
            retry_id=task_id,
        )
        record = ErrorRecord(
            id=new_id(),
            timestamp=self.clock(),
            message=f"Max retries exceeded for {op.kind.value}",
            error_type="max_retries_exceeded",
            severity=Severity.CRITICAL,
            operation=op.kind.value,
            context={
                "type": "max_retries_exceeded",
                "original_error": error_id,
                "attempts": attempts,
                "retry_id": task_id,
                "last_error": str(exc),
            },
        )
        self.errors.append(record)
        self._save_errors()
        log_event(
            self.logger,
            "Retries exhausted",
            level=logging.ERROR,
            event="retry_exhausted",
            operation=op.kind.value,
            attempts=attempts,
            error_id=record.id,
        )

    async def _escalate(self, op: Operation, error: ErrorRecord, attempts: int, reason: str) -> None:
        level = "critical" if error.severity == Severity.CRITICAL else "warning"
        await self.alerter.alert(
            level,
            "Operation failed permanently",
            f"{op.kind.value} failed and will not be retried: {reason}",
            action_taken="Operation abandoned",
            operation=op.kind.value,
            attempts=attempts,
            error_id=error.id,
            severity=error.severity.value,
        )
        log_event(
            self.logger,
            "Operation failed permanently",
            level=logging.ERROR,
            event="retry_permanent_failure",
            operation=op.kind.value,
            attempts=attempts,
            error_id=error.id,
            reason=reason,
        )

    def pending_for(self, op: Operation) -> RetryTask | None:
        """The queued, unfinished task for an identical operation, if any."""
        for task in self.queue:
            if not task.is_terminal and task.operation == op:
                return task
        return None

    def _find_error(self, error_id: str | None) -> ErrorRecord | None:
        for record in self.errors:
            if record.id == error_id:
                return record
        return None

    def stats(self) -> dict[str, Any]:
        unresolved = [record for record in self.errors if not record.resolved]
        by_severity = {severity.value: 0 for severity in Severity}
        for record in unresolved:
            by_severity[record.severity.value] += 1
        return {
            "total_errors": len(self.errors),
            "resolved_errors": len(self.errors) - len(unresolved),
            "unresolved_errors": len(unresolved),
            "pending_retries": sum(1 for task in self.queue if not task.is_terminal),
            "by_severity": by_severity,
        }

    def clear_resolved(self) -> int:
        before = len(self.errors)
        self.errors = [record for record in self.errors if not record.resolved]
        removed = before - len(self.errors)
        if removed:
            self._save_errors()
        log_event(self.logger, "Resolved errors cleared", event="errors_cleared", removed=removed)
        return removed

    def _save_errors(self) -> None:
        self.store.write_safely(ERROR_LOG, [record.to_dict() for record in self.errors])

    def _save_queue(self) -> None:
        self.store.write_safely(RETRY_QUEUE, [task.to_dict() for task in self.queue])
