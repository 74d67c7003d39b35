"""Frame builders and the server-push encoder.

Each builder wraps one typed payload into an ``SSEEvent``. The encoder turns
events into wire frames one at a time, in production order; a frame is
always written whole.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Iterable

from deepsearch.models.events import (
    ErrorEvent,
    Progress,
    ReportChunk,
    ReportComplete,
    ResearchPlanReady,
    SSEEvent,
    StatusChange,
    StepComplete,
    StepStart,
)
from deepsearch.models.research_plan import ResearchPlan
from deepsearch.models.snapshot import ReportSource
from deepsearch.models.steps import Phase, StepStatus, TOTAL_STEPS


def step_start(step: int, title: str, description: str, *, timestamp: str | None = None) -> SSEEvent:
    payload = StepStart(step=step, title=title, description=description)
    return SSEEvent(payload, timestamp) if timestamp else SSEEvent(payload)


def step_complete(
    step: int,
    title: str,
    description: str,
    *,
    data: dict[str, Any] | None = None,
    failed: bool = False,
) -> SSEEvent:
    return SSEEvent(
        StepComplete(
            step=step,
            title=title,
            description=description,
            status=StepStatus.ERROR if failed else StepStatus.COMPLETED,
            data=data,
        )
    )


def research_plan(plan: ResearchPlan) -> SSEEvent:
    return SSEEvent(ResearchPlanReady(plan=plan.model_dump(mode="json"), total_steps=TOTAL_STEPS))


def progress(value: int) -> SSEEvent:
    return SSEEvent(Progress(progress=value))


def status_change(phase: Phase) -> SSEEvent:
    return SSEEvent(StatusChange(status=phase.value))


def report_chunk(chunk: str) -> SSEEvent:
    return SSEEvent(ReportChunk(chunk=chunk))


def report_complete(full_report: str, sources: Iterable[ReportSource]) -> SSEEvent:
    return SSEEvent(
        ReportComplete(
            full_report=full_report,
            sources=tuple(s.model_dump(mode="json") for s in sources),
        )
    )


def error(message: str, step: int | None = None) -> SSEEvent:
    return SSEEvent(ErrorEvent(message=message, step=step))


# --- Encoder ---


def encode(event: SSEEvent) -> str:
    """One complete ``data:`` frame, newline terminated."""
    return event.format()


def to_sse_message(event: SSEEvent) -> dict[str, str]:
    """Message dict for ``sse_starlette.EventSourceResponse``."""
    return {"event": event.event.value, "data": json.dumps(event.to_dict())}


async def sse_messages(events: AsyncIterator[SSEEvent]) -> AsyncIterator[dict[str, str]]:
    async for event in events:
        yield to_sse_message(event)


async def encode_stream(events: AsyncIterator[SSEEvent]) -> AsyncIterator[bytes]:
    """Raw UTF-8 frames for plain streaming responses."""
    async for event in events:
        yield encode(event).encode("utf-8")
