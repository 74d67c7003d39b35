"""Run a research orchestrator independently of its HTTP consumer.

The orchestrator is driven by a background task that pushes every frame into
an unbounded queue. The SSE response only drains that queue, so a client
disconnect ends the drain while the run itself continues to completion and
keeps persisting its snapshot.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.models.events import SSEEvent
from deepsearch.services import logger as log_service
from deepsearch.services import streaming

# Strong references; the event loop only keeps weak ones to tasks.
_running: set[asyncio.Task] = set()


class RunHandle:
    def __init__(self, task: asyncio.Task, queue: "asyncio.Queue[SSEEvent | None]"):
        self.task = task
        self.queue = queue

    async def events(self) -> AsyncIterator[SSEEvent]:
        """Drain frames until the run signals the end of its stream."""
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


async def _pump(
    orchestrator: ResearchOrchestrator,
    topic: str,
    prior_run_id: str | None,
    queue: "asyncio.Queue[SSEEvent | None]",
) -> None:
    try:
        async for event in orchestrator.run(topic, prior_run_id):
            queue.put_nowait(event)
    except Exception as e:
        log_service.logger.exception("Research run crashed outside its step handlers")
        queue.put_nowait(streaming.error(f"Research failed: {e}"))
    finally:
        queue.put_nowait(None)


def start_run(
    orchestrator: ResearchOrchestrator,
    topic: str,
    prior_run_id: str | None = None,
) -> RunHandle:
    queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()
    task = asyncio.create_task(_pump(orchestrator, topic, prior_run_id, queue))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return RunHandle(task, queue)


def active_runs() -> int:
    return len(_running)
