"""
Process-wide pause/resume state.

The pipeline is paused automatically on a budget breach and resumed by an
operator. Each transition is persisted and optionally announced to an
outbound webhook.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

import httpx

from .core.types import WorkflowState, utc_now
from .errors import ApiError
from .logging_utils import log_event
from .notify.base import post_json
from .storage import WORKFLOW_STATE, JsonStore


class WorkflowController:
    """Owns the WorkflowState and its transitions.

    ``pause`` and ``resume`` return True only when the state actually
    changed, so repeated calls are harmless.
    """

    def __init__(
        self,
        store: JsonStore,
        pause_webhook: str | None = None,
        resume_webhook: str | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
        timeout: float = 15.0,
    ):
        self.store = store
        self.pause_webhook = pause_webhook
        self.resume_webhook = resume_webhook
        self.client = client
        self.clock = clock or utc_now
        self.timeout = timeout
        self._state = WorkflowState()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger("sports_feed.workflow")

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    def get_state(self) -> WorkflowState:
        return WorkflowState.from_dict(self._state.to_dict())

    def load(self) -> WorkflowState:
        data = self.store.read(WORKFLOW_STATE, default=None)
        if isinstance(data, dict):
            self._state = WorkflowState.from_dict(data)
        return self.get_state()

    async def pause(self, reason: str) -> bool:
        async with self._lock:
            now = self.clock()
            changed = self._state.mark_paused(reason, now)
            if not changed:
                log_event(
                    self.logger,
                    "Pipeline already paused",
                    event="workflow_pause_noop",
                    reason=reason,
                    current_reason=self._state.pause_reason,
                )
                return False
            self.store.write_safely(WORKFLOW_STATE, self._state.to_dict())
        log_event(
            self.logger,
            "Pipeline paused",
            level=logging.WARNING,
            event="workflow_paused",
            reason=reason,
            pause_count=self._state.pause_count,
        )
        await self._announce(
            self.pause_webhook,
            {"action": "pause_all", "reason": reason, "timestamp": now.isoformat()},
        )
        return True

    async def resume(self, reason: str = "manual") -> bool:
        async with self._lock:
            now = self.clock()
            changed = self._state.mark_resumed(now)
            if not changed:
                log_event(self.logger, "Pipeline already active", event="workflow_resume_noop")
                return False
            self.store.write_safely(WORKFLOW_STATE, self._state.to_dict())
        log_event(
            self.logger,
            "Pipeline resumed",
            event="workflow_resumed",
            reason=reason,
            resume_count=self._state.resume_count,
        )
        await self._announce(
            self.resume_webhook,
            {"action": "resume_all", "reason": reason, "timestamp": now.isoformat()},
        )
        return True

    async def _announce(self, url: str | None, payload: dict[str, Any]) -> None:
        if not url:
            return
        try:
            await post_json(self.client, url, payload, self.timeout, "workflow_webhook")
        except (httpx.HTTPError, ApiError) as exc:
            log_event(
                self.logger,
                "Workflow webhook failed",
                level=logging.ERROR,
                event="workflow_webhook_failed",
                action=payload["action"],
                error=str(exc),
            )
