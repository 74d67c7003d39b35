from __future__ import annotations

import pytest

from deepsearch.models.events import EventType
from deepsearch.services import runner, streaming


class ScriptedOrchestrator:
    def __init__(self, events, *, crash: Exception | None = None):
        self.events = events
        self.crash = crash
        self.calls = []

    async def run(self, topic, prior_run_id=None):
        self.calls.append((topic, prior_run_id))
        for event in self.events:
            yield event
        if self.crash is not None:
            raise self.crash


@pytest.mark.asyncio
async def test_events_are_drained_in_order_and_stream_ends():
    events = [streaming.step_start(1, "Research Planning", "..."), streaming.progress(12)]
    orchestrator = ScriptedOrchestrator(events)

    handle = runner.start_run(orchestrator, "Qubits", prior_run_id="m-1")
    received = [event async for event in handle.events()]

    assert received == events
    assert orchestrator.calls == [("Qubits", "m-1")]


@pytest.mark.asyncio
async def test_unexpected_crash_becomes_error_frame():
    orchestrator = ScriptedOrchestrator([streaming.progress(12)], crash=RuntimeError("loop died"))

    handle = runner.start_run(orchestrator, "Qubits")
    received = [event async for event in handle.events()]

    assert [e.event for e in received] == [EventType.PROGRESS, EventType.ERROR]
    assert "loop died" in received[-1].data["message"]


@pytest.mark.asyncio
async def test_task_is_tracked_until_done():
    handle = runner.start_run(ScriptedOrchestrator([]), "Qubits")
    assert runner.active_runs() >= 1
    await handle.task
    assert handle.task not in runner._running
