"""Rebuild a ``ClientViewState`` from a persisted research record.

Used when there is no live stream to fold, e.g. a reload after the run
finished or the browser tab that started it went away. Step payloads are
produced by the same record methods the orchestrator uses for its live
``step_complete`` frames, so a recovered view renders like a live one.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from deepsearch.client.reducer import ClientViewState, StepUpdate
from deepsearch.config import settings
from deepsearch.models import steps
from deepsearch.models.snapshot import ResearchSnapshot
from deepsearch.models.steps import Phase, StepStatus
from deepsearch.services import logger as log_service

ERROR_STATUS = "error"


def _phase_for_status(status: Any, fallback: Phase) -> Phase:
    if status == ERROR_STATUS:
        return Phase.COMPLETE
    try:
        return Phase(status)
    except ValueError:
        return fallback


def _load_snapshot(raw: Any) -> ResearchSnapshot | None:
    if not isinstance(raw, dict):
        return None
    try:
        return ResearchSnapshot.from_record(raw)
    except ValidationError as e:
        log_service.log_event(
            event_type="recovery_skipped",
            message="Persisted research snapshot is malformed",
            error=str(e),
        )
        return None


def _planning_update(timestamp: str) -> StepUpdate:
    return StepUpdate(
        step=steps.PLANNING_STEP,
        title=steps.PLANNING_TITLE,
        description=steps.PLANNING_DONE,
        status=StepStatus.COMPLETED,
        timestamp=timestamp,
    )


def _report_update(
    status: Any, content: str, sources: list[dict[str, Any]], timestamp: str
) -> StepUpdate | None:
    if status == Phase.COMPLETE.value and content:
        return StepUpdate(
            step=steps.REPORT_STEP,
            title=steps.REPORT_TITLE,
            description=steps.REPORT_DONE,
            status=StepStatus.COMPLETED,
            data={"sourceCount": len(sources)},
            timestamp=timestamp,
        )
    if not timestamp:
        return None
    if status == ERROR_STATUS:
        return StepUpdate(
            step=steps.REPORT_STEP,
            title=steps.REPORT_TITLE,
            description=steps.REPORT_FAILED,
            status=StepStatus.ERROR,
            timestamp=timestamp,
        )
    return StepUpdate(
        step=steps.REPORT_STEP,
        title=steps.REPORT_TITLE,
        description=steps.REPORT_RUNNING,
        status=StepStatus.RUNNING,
        timestamp=timestamp,
    )


def _snapshot_steps(snapshot: ResearchSnapshot, preview_count: int) -> list[StepUpdate]:
    updates: list[StepUpdate] = []
    for search in snapshot.searches:
        updates.append(
            StepUpdate(
                step=search.step,
                title=steps.search_title(search.step),
                description=(
                    steps.search_failed(search.error)
                    if search.failed
                    else steps.search_done(search.result_count)
                ),
                status=StepStatus.ERROR if search.failed else StepStatus.COMPLETED,
                data=search.step_data(preview_count),
                timestamp=search.started_at,
            )
        )
    for analysis in snapshot.analyses:
        updates.append(
            StepUpdate(
                step=analysis.step,
                title=steps.analysis_title(analysis.step, analysis.type),
                description=(
                    steps.analysis_failed(analysis.error)
                    if analysis.failed
                    else steps.analysis_done(analysis.findings_count)
                ),
                status=StepStatus.ERROR if analysis.failed else StepStatus.COMPLETED,
                data=analysis.step_data(preview_count),
                timestamp=analysis.started_at,
            )
        )
    return updates


def _legacy_steps(record: dict[str, Any], preview_count: int) -> list[StepUpdate]:
    """Steps for records written without a ``research_plan_links`` snapshot."""
    timestamp = str(record.get("created_at") or "")
    updates: list[StepUpdate] = []

    search_results = record.get("search_results")
    for index, entry in enumerate(search_results if isinstance(search_results, list) else []):
        if not isinstance(entry, dict):
            continue
        step = steps.search_step(index)
        query = entry.get("query")
        query_text = query.get("query", "") if isinstance(query, dict) else str(query or "")
        results = [r for r in entry.get("results") or [] if isinstance(r, dict)]
        error = entry.get("error")
        data: dict[str, Any] = {
            "query": query_text,
            "resultCount": len(results),
            "sources": [
                {"title": r.get("title") or "Untitled", "url": r.get("url", "")}
                for r in results[:preview_count]
            ],
        }
        if error:
            data["error"] = error
        updates.append(
            StepUpdate(
                step=step,
                title=steps.search_title(step),
                description=steps.search_failed(error) if error else steps.search_done(len(results)),
                status=StepStatus.ERROR if error else StepStatus.COMPLETED,
                data=data,
                timestamp=timestamp,
            )
        )

    analysis_results = record.get("analysis_results")
    for index, entry in enumerate(analysis_results if isinstance(analysis_results, list) else []):
        if not isinstance(entry, dict):
            continue
        step = steps.analysis_step(index)
        result = entry.get("result") if isinstance(entry.get("result"), dict) else {}
        findings = [f for f in result.get("findings") or [] if isinstance(f, dict)]
        key_sources = [s for s in result.get("key_sources") or [] if isinstance(s, dict)]
        analysis_type = str(entry.get("type") or "")
        updates.append(
            StepUpdate(
                step=step,
                title=steps.analysis_title(step, analysis_type),
                description=steps.analysis_done(len(findings)),
                status=StepStatus.COMPLETED,
                data={
                    "type": analysis_type,
                    "findingsCount": len(findings),
                    "insights": [
                        str(f.get("insight", ""))
                        for f in findings[: settings.insight_preview_count]
                    ],
                    "keyLinks": key_sources[:preview_count],
                },
                timestamp=timestamp,
            )
        )
    return updates


def reconstruct(record: dict[str, Any], *, preview_count: int | None = None) -> ClientViewState | None:
    """Return the view state a live observer would have, or None.

    None means there is nothing to recover: the record carries no search or
    analysis data yet.
    """
    preview = preview_count if preview_count is not None else max(int(settings.step_preview_count), 1)
    status = record.get("research_status")
    content = record.get("content") if isinstance(record.get("content"), str) else ""
    raw_sources = record.get("citation_sources")
    sources = [s for s in raw_sources if isinstance(s, dict)] if isinstance(raw_sources, list) else []
    plan = record.get("research_plan") if isinstance(record.get("research_plan"), dict) else None

    snapshot = _load_snapshot(record.get("research_plan_links"))
    if snapshot is not None and not snapshot.is_empty:
        updates = _snapshot_steps(snapshot, preview)
        progress = snapshot.completion_rate
        planning_timestamp = snapshot.created_at
        report_timestamp = snapshot.report_started_at or ""
    else:
        updates = _legacy_steps(record, preview)
        if not updates:
            return None
        progress = int(record.get("research_progress") or 0)
        planning_timestamp = str(record.get("created_at") or "")
        report_timestamp = planning_timestamp if status == Phase.COMPLETE.value else ""

    if plan is not None:
        updates.append(_planning_update(planning_timestamp))
    report = _report_update(status, content, sources, report_timestamp)
    if report is not None:
        updates.append(report)

    ordered = tuple(sorted(updates, key=lambda s: s.step))
    fallback = steps.phase_for_step(ordered[-1].step)
    phase = _phase_for_status(status, fallback)
    if phase == Phase.COMPLETE and status != ERROR_STATUS:
        progress = 100

    error = None
    if status == ERROR_STATUS:
        error = str(record.get("research_error") or "") or "Research failed"

    return ClientViewState(
        progress=max(0, min(100, progress)),
        phase=phase,
        steps=ordered,
        report_text=content,
        final_sources=tuple(sources),
        plan=plan,
        error=error,
    )
