"""Closed step catalog shared by the live pipeline and snapshot recovery.

Step identity is the step number. Numbers are fixed by phase and never
depend on how many results a search returned:

    1        planning
    2..6     searches
    7..11    analyses
    12       report
"""

from __future__ import annotations

import math
from enum import Enum

from deepsearch.models.research_plan import PLAN_ANALYSIS_COUNT, PLAN_SEARCH_COUNT

PLANNING_STEP = 1
FIRST_SEARCH_STEP = 2
FIRST_ANALYSIS_STEP = FIRST_SEARCH_STEP + PLAN_SEARCH_COUNT
REPORT_STEP = FIRST_ANALYSIS_STEP + PLAN_ANALYSIS_COUNT
# Searches plus analyses; planning and the report are not counted.
TOTAL_STEPS = PLAN_SEARCH_COUNT + PLAN_ANALYSIS_COUNT

SEARCH_PROGRESS_SHARE = 70
ANALYSIS_PROGRESS_SHARE = 25


class Phase(str, Enum):
    PLANNING = "planning"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    REPORTING = "reporting"
    COMPLETE = "complete"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


def search_step(index: int) -> int:
    """Step number of the zero-based search ``index``."""
    return FIRST_SEARCH_STEP + index


def analysis_step(index: int) -> int:
    """Step number of the zero-based analysis ``index``."""
    return FIRST_ANALYSIS_STEP + index


def phase_for_step(step: int) -> Phase:
    if step == PLANNING_STEP:
        return Phase.PLANNING
    if FIRST_SEARCH_STEP <= step < FIRST_ANALYSIS_STEP:
        return Phase.SEARCHING
    return Phase.ANALYZING


def _round(value: float) -> int:
    # Half-up, so 17.5 -> 18 regardless of parity.
    return int(math.floor(value + 0.5))


def search_progress(step: int) -> int:
    return _round(step / TOTAL_STEPS * SEARCH_PROGRESS_SHARE)


def analysis_progress(completed: int) -> int:
    """Progress after ``completed`` analyses (1-based count)."""
    return _round(
        SEARCH_PROGRESS_SHARE + (completed / PLAN_ANALYSIS_COUNT) * ANALYSIS_PROGRESS_SHARE
    )


# --- Titles and descriptions ---

PLANNING_TITLE = "Research Planning"
PLANNING_RUNNING = "Creating comprehensive research plan..."
PLANNING_DONE = "Research plan created successfully"
PLANNING_FAILED = "Research plan could not be created"

REPORT_TITLE = "Final Report Generation"
REPORT_RUNNING = "Generating comprehensive report with citations..."
REPORT_DONE = "Report generated successfully"
REPORT_FAILED = "Report generation failed"


def search_title(step: int) -> str:
    return f"Web Search {step - FIRST_SEARCH_STEP + 1}"


def search_running(query: str) -> str:
    return f'Searching: "{query}"'


def search_done(result_count: int) -> str:
    return f"Found {result_count} sources"


def search_failed(error: str | None) -> str:
    return f"Search failed: {error}" if error else "Search failed"


def analysis_title(step: int, analysis_type: str) -> str:
    return f"Analysis {step - FIRST_ANALYSIS_STEP + 1}: {analysis_type}"


def analysis_done(findings_count: int) -> str:
    return f"Analysis completed - {findings_count} key findings"


def analysis_failed(error: str | None) -> str:
    return f"Analysis failed: {error}" if error else "Analysis failed"
