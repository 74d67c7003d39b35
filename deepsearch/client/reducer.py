"""Client-side view state, folded from the live frame stream.

``reduce`` is pure: it never mutates the incoming state and returns the same
state object for frames it does not understand. Steps are matched by step
number, never by position, so a replayed or duplicated frame overwrites the
step it belongs to instead of appending a second copy.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable

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
from deepsearch.models.steps import Phase, StepStatus, phase_for_step


@dataclass(frozen=True)
class StepUpdate:
    step: int
    title: str
    description: str
    status: StepStatus = StepStatus.RUNNING
    data: dict[str, Any] | None = None
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step": self.step,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(frozen=True)
class ClientViewState:
    progress: int = 0
    phase: Phase = Phase.PLANNING
    steps: tuple[StepUpdate, ...] = ()
    report_text: str = ""
    final_sources: tuple[dict[str, Any], ...] = ()
    plan: dict[str, Any] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase == Phase.COMPLETE

    def step(self, number: int) -> StepUpdate | None:
        for update in self.steps:
            if update.step == number:
                return update
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "progress": self.progress,
            "phase": self.phase.value,
            "orderedSteps": [s.to_dict() for s in self.steps],
            "streamedReportText": self.report_text,
            "finalSources": list(self.final_sources),
            "plan": self.plan,
            "error": self.error,
        }


def _put_step(steps: tuple[StepUpdate, ...], update: StepUpdate) -> tuple[StepUpdate, ...]:
    kept = [s for s in steps if s.step != update.step]
    kept.append(update)
    return tuple(sorted(kept, key=lambda s: s.step))


def reduce(state: ClientViewState, frame: SSEEvent) -> ClientViewState:
    payload = frame.payload

    if isinstance(payload, StepStart):
        update = StepUpdate(
            step=payload.step,
            title=payload.title,
            description=payload.description,
            status=StepStatus.RUNNING,
            timestamp=frame.timestamp,
        )
        return replace(
            state,
            steps=_put_step(state.steps, update),
            phase=phase_for_step(payload.step),
        )

    if isinstance(payload, StepComplete):
        existing = state.step(payload.step)
        data = dict(existing.data) if existing and existing.data else None
        if payload.data is not None:
            data = {**(data or {}), **payload.data}
        update = StepUpdate(
            step=payload.step,
            title=payload.title,
            description=payload.description,
            status=payload.status,
            data=data,
            timestamp=existing.timestamp if existing else frame.timestamp,
        )
        return replace(state, steps=_put_step(state.steps, update))

    if isinstance(payload, ResearchPlanReady):
        if state.plan is not None:
            return state
        return replace(state, plan=payload.plan)

    if isinstance(payload, Progress):
        return replace(state, progress=max(0, min(100, payload.progress)))

    if isinstance(payload, StatusChange):
        try:
            phase = Phase(payload.status)
        except ValueError:
            return state
        return replace(state, phase=phase)

    if isinstance(payload, ReportChunk):
        return replace(state, report_text=state.report_text + payload.chunk)

    if isinstance(payload, ReportComplete):
        return replace(
            state,
            report_text=payload.full_report,
            final_sources=tuple(payload.sources),
            progress=100,
            phase=Phase.COMPLETE,
        )

    if isinstance(payload, ErrorEvent):
        return replace(state, error=payload.message, phase=Phase.COMPLETE)

    return state


def fold(frames: Iterable[SSEEvent], state: ClientViewState | None = None) -> ClientViewState:
    current = state if state is not None else ClientViewState()
    for frame in frames:
        current = reduce(current, frame)
    return current
