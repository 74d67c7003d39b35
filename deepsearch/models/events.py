"""Typed event frames of the deep search streaming protocol.

Every frame on the wire is one JSON object ``{type, data, timestamp}``. Each
``type`` has its own payload class, so consumers dispatch on the payload
class instead of probing loosely-typed dictionaries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from deepsearch.models.snapshot import utc_now
from deepsearch.models.steps import StepStatus


class EventType(str, Enum):
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    RESEARCH_PLAN = "research_plan"
    PROGRESS = "progress"
    STATUS_CHANGE = "status_change"
    REPORT_CHUNK = "report_chunk"
    REPORT_COMPLETE = "report_complete"
    ERROR = "error"


@dataclass(frozen=True)
class StepStart:
    event: ClassVar[EventType] = EventType.STEP_START

    step: int
    title: str
    description: str

    def to_data(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "title": self.title,
            "description": self.description,
            "status": StepStatus.RUNNING.value,
        }

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "StepStart":
        return cls(
            step=int(data["step"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class StepComplete:
    event: ClassVar[EventType] = EventType.STEP_COMPLETE

    step: int
    title: str
    description: str
    status: StepStatus = StepStatus.COMPLETED
    data: dict[str, Any] | None = None

    def to_data(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step": self.step,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "StepComplete":
        status = StepStatus(data.get("status", StepStatus.COMPLETED.value))
        if status not in (StepStatus.COMPLETED, StepStatus.ERROR):
            raise ValueError(f"Invalid step_complete status: {status.value}")
        step_data = data.get("data")
        if step_data is not None and not isinstance(step_data, dict):
            raise ValueError("step_complete data must be an object")
        return cls(
            step=int(data["step"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            status=status,
            data=step_data,
        )


@dataclass(frozen=True)
class ResearchPlanReady:
    event: ClassVar[EventType] = EventType.RESEARCH_PLAN

    plan: dict[str, Any]
    total_steps: int

    def to_data(self) -> dict[str, Any]:
        return {"plan": self.plan, "totalSteps": self.total_steps}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "ResearchPlanReady":
        plan = data["plan"]
        if not isinstance(plan, dict):
            raise ValueError("research_plan plan must be an object")
        return cls(plan=plan, total_steps=int(data.get("totalSteps", 0)))


@dataclass(frozen=True)
class Progress:
    event: ClassVar[EventType] = EventType.PROGRESS

    progress: int

    def to_data(self) -> dict[str, Any]:
        return {"progress": self.progress}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "Progress":
        return cls(progress=int(round(float(data["progress"]))))


@dataclass(frozen=True)
class StatusChange:
    event: ClassVar[EventType] = EventType.STATUS_CHANGE

    status: str

    def to_data(self) -> dict[str, Any]:
        return {"status": self.status}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "StatusChange":
        return cls(status=str(data["status"]))


@dataclass(frozen=True)
class ReportChunk:
    event: ClassVar[EventType] = EventType.REPORT_CHUNK

    chunk: str

    def to_data(self) -> dict[str, Any]:
        return {"chunk": self.chunk}

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "ReportChunk":
        chunk = data["chunk"]
        if not isinstance(chunk, str):
            raise ValueError("report_chunk chunk must be a string")
        return cls(chunk=chunk)


@dataclass(frozen=True)
class ReportComplete:
    event: ClassVar[EventType] = EventType.REPORT_COMPLETE

    full_report: str
    sources: tuple[dict[str, Any], ...] = ()

    def to_data(self) -> dict[str, Any]:
        return {
            "fullReport": self.full_report,
            "citationCount": len(self.sources),
            "sources": list(self.sources),
        }

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "ReportComplete":
        raw_sources = data.get("sources") or []
        if not isinstance(raw_sources, list):
            raise ValueError("report_complete sources must be a list")
        return cls(
            full_report=str(data["fullReport"]),
            sources=tuple(s for s in raw_sources if isinstance(s, dict)),
        )


@dataclass(frozen=True)
class ErrorEvent:
    event: ClassVar[EventType] = EventType.ERROR

    message: str
    step: int | None = None

    def to_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.step is not None:
            data["step"] = self.step
        return data

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "ErrorEvent":
        step = data.get("step")
        return cls(
            message=str(data.get("message", "Unknown error occurred")),
            step=step if isinstance(step, int) else None,
        )


ResearchEvent = Union[
    StepStart,
    StepComplete,
    ResearchPlanReady,
    Progress,
    StatusChange,
    ReportChunk,
    ReportComplete,
    ErrorEvent,
]

PAYLOAD_TYPES: dict[str, type] = {
    cls.event.value: cls
    for cls in (
        StepStart,
        StepComplete,
        ResearchPlanReady,
        Progress,
        StatusChange,
        ReportChunk,
        ReportComplete,
        ErrorEvent,
    )
}


@dataclass(frozen=True)
class SSEEvent:
    """One frame: a typed payload plus the time it was produced."""

    payload: ResearchEvent
    timestamp: str = field(default_factory=utc_now)

    @property
    def event(self) -> EventType:
        return self.payload.event

    @property
    def data(self) -> dict[str, Any]:
        return self.payload.to_data()

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event.value, "data": self.data, "timestamp": self.timestamp}

    def format(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SSEEvent | None":
        """Parse a decoded frame. Unknown ``type`` values return None.

        Raises ``KeyError``/``ValueError``/``TypeError``, or ``OverflowError``
        for non-finite numbers, when a known frame type carries a malformed
        payload.
        """
        payload_cls = PAYLOAD_TYPES.get(raw.get("type"))  # type: ignore[arg-type]
        if payload_cls is None:
            return None
        data = raw.get("data")
        if not isinstance(data, dict):
            raise ValueError("frame data must be an object")
        timestamp = raw.get("timestamp")
        return cls(
            payload=payload_cls.from_data(data),
            timestamp=timestamp if isinstance(timestamp, str) else utc_now(),
        )
