"""Failure taxonomy for a deep search run.

Adapter failures are caught at the step boundary by the orchestrator and
turned into either a degraded step (searches) or a terminal ``error`` frame
(planning, analysis, report). ``TransportFailure`` never leaves the client
stream reader: the offending frame is skipped.
"""

from __future__ import annotations


class DeepSearchError(Exception):
    """Base class for all deep search errors."""


class AdapterError(DeepSearchError):
    """An external search or model call failed."""

    def __init__(self, adapter: str, message: str):
        super().__init__(f"{adapter}: {message}")
        self.adapter = adapter


class AdapterTimeout(AdapterError):
    """An external call did not finish within its configured timeout."""


class StepFailure(DeepSearchError):
    """A pipeline step could not be completed."""

    step: int | None = None

    def __init__(self, message: str, *, step: int | None = None):
        super().__init__(message)
        if step is not None:
            self.step = step


class PlanningFailure(StepFailure):
    step = 1


class SearchFailure(StepFailure):
    pass


class AnalysisFailure(StepFailure):
    pass


class ReportFailure(StepFailure):
    step = 12


class TransportFailure(DeepSearchError):
    """A single frame on the wire could not be decoded."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
