import asyncio
import json
from pathlib import Path

import httpx

from sports_feed.storage import WORKFLOW_STATE, JsonStore
from sports_feed.workflow import WorkflowController


def test_pause_and_resume_are_idempotent(tmp_path: Path):
    workflow = WorkflowController(JsonStore(tmp_path))

    async def _run():
        return [
            await workflow.pause("daily_budget_exceeded"),
            await workflow.pause("manual"),
            await workflow.resume(),
            await workflow.resume(),
        ]

    assert asyncio.run(_run()) == [True, False, True, False]
    state = workflow.get_state()
    assert state.is_active is True
    assert state.pause_reason is None
    assert state.pause_count == 1
    assert state.resume_count == 1


def test_pause_reason_kept_from_first_pause(tmp_path: Path):
    workflow = WorkflowController(JsonStore(tmp_path))

    async def _run():
        await workflow.pause("daily_budget_exceeded")
        await workflow.pause("manual")

    asyncio.run(_run())
    assert workflow.is_active is False
    assert workflow.get_state().pause_reason == "daily_budget_exceeded"


def test_state_is_persisted_and_reloaded(tmp_path: Path):
    store = JsonStore(tmp_path)
    asyncio.run(WorkflowController(store).pause("manual"))
    assert store.read(WORKFLOW_STATE)["is_active"] is False

    restored = WorkflowController(store)
    restored.load()
    assert restored.is_active is False
    assert restored.get_state().pause_reason == "manual"


def test_get_state_returns_a_copy(tmp_path: Path):
    workflow = WorkflowController(JsonStore(tmp_path))
    state = workflow.get_state()
    state.is_active = False
    assert workflow.is_active is True


def test_transitions_are_announced_to_webhooks(tmp_path: Path):
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200)

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            workflow = WorkflowController(
                JsonStore(tmp_path),
                pause_webhook="https://hooks.test/pause",
                resume_webhook="https://hooks.test/resume",
                client=client,
            )
            await workflow.pause("weekly_budget_exceeded")
            await workflow.resume("operator")

    asyncio.run(_run())

    assert [url for url, _ in posted] == ["https://hooks.test/pause", "https://hooks.test/resume"]
    assert posted[0][1]["action"] == "pause_all"
    assert posted[0][1]["reason"] == "weekly_budget_exceeded"
    assert posted[1][1]["action"] == "resume_all"


def test_webhook_failure_does_not_block_pause(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="down")

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            workflow = WorkflowController(JsonStore(tmp_path), pause_webhook="https://hooks.test/pause", client=client)
            changed = await workflow.pause("manual")
            return changed, workflow.is_active

    assert asyncio.run(_run()) == (True, False)
