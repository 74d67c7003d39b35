from __future__ import annotations

import asyncio
import json
import time
from datetime import date, datetime
from typing import Any, AsyncGenerator

from deepsearch.config import settings
from deepsearch.errors import (
    AnalysisFailure,
    PlanningFailure,
    ReportFailure,
    SearchFailure,
    StepFailure,
)
from deepsearch.llm_client import GenerativeModel, generative_model, get_model
from deepsearch.models import steps
from deepsearch.models.events import SSEEvent
from deepsearch.models.research_plan import AnalysisResult, AnalysisSpec, ResearchPlan, SearchSpec
from deepsearch.models.snapshot import (
    AnalysisLinkRecord,
    KeySourceRecord,
    LinkRecord,
    ReportSource,
    ResearchSnapshot,
    SearchLinkRecord,
    utc_now,
)
from deepsearch.models.steps import Phase
from deepsearch.services import logger as log_service
from deepsearch.services import streaming
from deepsearch.services.memory_store import ResearchStore, get_research_store
from deepsearch.services.prompt_store import render_prompt
from deepsearch.tools import search_provider, web_utils

SEARCH_SOURCE_RELEVANCE = 0.8
ANALYSIS_SOURCE_RELEVANCE = 0.7


def build_report_sources(
    search_results: list[dict[str, Any]],
    analysis_results: list[dict[str, Any]],
) -> list[ReportSource]:
    """Deduplicate every URL seen during the run into the numbered citation list.

    Search results come first, then analysis key sources. The first
    occurrence of a URL decides its title and relevance.
    """
    sources: list[ReportSource] = []
    seen_urls: set[str] = set()

    def add(title: Any, url: Any, relevance: float) -> None:
        if not isinstance(url, str) or not url or url in seen_urls:
            return
        seen_urls.add(url)
        sources.append(
            ReportSource(
                title=str(title or "") or "Untitled",
                url=url,
                relevance=relevance,
            )
        )

    for entry in search_results:
        for result in entry.get("results") or []:
            add(result.get("title"), result.get("url"), SEARCH_SOURCE_RELEVANCE)

    for analysis in analysis_results:
        result = analysis.get("result") or {}
        for source in result.get("key_sources") or []:
            add(
                source.get("title"),
                source.get("url"),
                source.get("relevance") or ANALYSIS_SOURCE_RELEVANCE,
            )

    return sources


def format_sources_section(sources: list[ReportSource], *, completed_on: date | None = None) -> str:
    lines = []
    for index, source in enumerate(sources, 1):
        line = f"**[{index}]** [{source.title}]({source.url})"
        if source.relevance:
            line += f" (Relevance: {round(source.relevance * 100)}%)"
        lines.append(line)
    day = (completed_on or date.today()).isoformat()
    return (
        "\n\n## Sources and References\n\n"
        + "\n\n".join(lines)
        + "\n\n---\n\n"
        + f"*Research completed on {day} using Deep Search with multiple source verification and analysis.*"
    )


class ResearchOrchestrator:
    """Runs one deep search and streams its progress.

    Flow (strictly sequential, one external call in flight at a time):
      1. PLANNING: model produces 5 searches and 5 analyses
      2-6. SEARCHING: one web search per planned query
      7-11. ANALYZING: one structured analysis over the whole corpus
      12. REPORTING: streamed markdown report with numbered citations

    ``run`` is an async generator of ``SSEEvent``. Before any frame that
    reflects a finished step is yielded, the next ``ResearchSnapshot`` has
    been written to the run's record, so recovery never lags the stream.
    A failed search degrades to zero results; planning, analysis and report
    failures end the run with a single ``error`` frame.
    """

    def __init__(
        self,
        model: str | None = None,
        *,
        session_id: str,
        depth: str = "basic",
        store: ResearchStore | None = None,
        llm: GenerativeModel | None = None,
    ):
        self.model = model or get_model()
        planner_override = settings.planner_model.strip()
        self.planner_model = planner_override or self.model
        self.session_id = str(session_id)
        self.search_depth = search_provider.search_depth_for(depth)
        self.store = store
        self.llm = llm
        self.search_timeout = float(settings.search_timeout_seconds)
        self.preview_count = max(int(settings.step_preview_count), 1)
        self.insight_count = max(int(settings.insight_preview_count), 0)
        self.message_id: str | None = None

    @property
    def run_id(self) -> str:
        return self.message_id or self.session_id

    def _store(self) -> ResearchStore:
        return self.store or get_research_store()

    def _llm(self) -> GenerativeModel:
        return self.llm or generative_model()

    # --- Persistence ---

    async def _open_record(self, prior_run_id: str | None, snapshot: ResearchSnapshot) -> None:
        fields = {
            "research_plan": None,
            "research_plan_links": snapshot.to_record(),
            "research_status": Phase.PLANNING.value,
            "research_progress": 0,
        }
        try:
            if prior_run_id:
                await self._store().update_message(prior_run_id, fields)
                self.message_id = str(prior_run_id)
            else:
                row = await self._store().create_message(self.session_id, "assistant", "", **fields)
                self.message_id = str(row["id"])
        except Exception as e:
            log_service.log_event(
                event_type="db_error",
                message="Failed to open research record; continuing without persistence",
                error=str(e),
                session_id=self.session_id,
            )

    async def _persist(self, updates: dict[str, Any]) -> None:
        if not self.message_id:
            return
        try:
            await self._store().update_message(self.message_id, updates)
        except Exception as e:
            log_service.log_event(
                event_type="db_error",
                message="Failed to persist research progress",
                error=str(e),
                message_id=self.message_id,
                fields=sorted(updates),
            )

    async def _persist_failure(
        self, failure: StepFailure, updates: dict[str, Any] | None = None
    ) -> None:
        """Record the terminal error before the failed step is announced."""
        await self._persist(
            {**(updates or {}), "research_status": "error", "research_error": str(failure)}
        )

    # --- Steps ---

    async def _create_plan(self, topic: str) -> ResearchPlan:
        current_date = datetime.now().strftime("%A, %B %d, %Y")
        prompt = render_prompt("plan.user", topic=topic, current_date=current_date)
        return await self._llm().generate_object(
            ResearchPlan,
            prompt,
            model=self.planner_model,
            temperature=settings.plan_temperature,
            caller="orchestrator.plan",
        )

    async def _execute_search(self, step: int, spec: SearchSpec) -> search_provider.SearchResponse:
        max_results = search_provider.result_count_for_priority(spec.priority)
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                search_provider.search(
                    spec.query,
                    search_depth=self.search_depth,
                    max_results=max_results,
                ),
                timeout=self.search_timeout,
            )
        except asyncio.TimeoutError as exc:
            message = f"timed out after {self.search_timeout:g}s"
            log_service.log_search_call(settings.search_provider, spec.query, error=message)
            raise SearchFailure(message, step=step) from exc
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log_service.log_search_call(settings.search_provider, spec.query, error=message)
            raise SearchFailure(message, step=step) from exc

        if response.fallback_from:
            log_service.log_event(
                event_type="search_fallback",
                message=f"{response.fallback_from} search fell back to {response.provider}",
                reason=response.fallback_reason,
                step=step,
            )
        log_service.log_search_call(
            response.provider,
            spec.query,
            result_count=len(response.results),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    async def _search_step(
        self, step: int, spec: SearchSpec, *, started_at: str
    ) -> tuple[SearchLinkRecord, dict[str, Any]]:
        """Run one planned search. Never raises: failures become a failed record."""
        entry: dict[str, Any] = {
            "type": "web",
            "query": {"query": spec.query, "priority": spec.priority},
            "results": [],
        }
        try:
            response = await self._execute_search(step, spec)
        except SearchFailure as exc:
            entry["error"] = str(exc)
            record = SearchLinkRecord(
                step=step,
                query=spec.query,
                priority=spec.priority,
                status="failed",
                result_count=0,
                error=str(exc),
                started_at=started_at,
            )
            return record, entry

        entry["results"] = search_provider.results_to_dicts(response.results)
        found_at = utc_now()
        links = tuple(
            LinkRecord(
                title=result.title or "Untitled",
                url=result.url,
                relevance=float(result.score or 0.0),
                domain=web_utils.extract_domain(result.url),
                found_at=found_at,
            )
            for result in response.results
            if result.url
        )
        record = SearchLinkRecord(
            step=step,
            query=spec.query,
            priority=spec.priority,
            links=links,
            status="completed",
            result_count=len(links),
            started_at=started_at,
        )
        return record, entry

    async def _analysis_step(
        self, spec: AnalysisSpec, search_results: list[dict[str, Any]]
    ) -> AnalysisResult:
        prompt = render_prompt(
            "analysis.user",
            analysis_type=spec.type,
            analysis_description=spec.description,
            search_results_json=json.dumps(search_results, indent=2),
        )
        return await self._llm().generate_object(
            AnalysisResult,
            prompt,
            model=self.model,
            temperature=settings.analysis_temperature,
            caller="orchestrator.analysis",
        )

    def _analysis_record(
        self,
        step: int,
        spec: AnalysisSpec,
        result: AnalysisResult,
        *,
        started_at: str,
    ) -> AnalysisLinkRecord:
        return AnalysisLinkRecord(
            step=step,
            type=spec.type,
            description=spec.description,
            key_sources=tuple(
                KeySourceRecord(title=s.title, url=s.url, relevance=s.relevance)
                for s in result.key_sources
            ),
            findings_count=len(result.findings),
            insights=tuple(f.insight for f in result.findings[: self.insight_count]),
            status="completed",
            started_at=started_at,
        )

    @staticmethod
    def _build_report_prompt(
        topic: str,
        search_results: list[dict[str, Any]],
        analysis_results: list[dict[str, Any]],
        sources: list[ReportSource],
    ) -> str:
        citation_mapping = "\n".join(
            f"[{index}] {source.url}" for index, source in enumerate(sources, 1)
        )
        return render_prompt(
            "report.user",
            topic=topic,
            search_results_json=json.dumps(search_results, indent=2),
            analysis_results_json=json.dumps(analysis_results, indent=2),
            citation_mapping=citation_mapping or "(no sources)",
        )

    # --- Pipeline ---

    async def run(self, topic: str, prior_run_id: str | None = None) -> AsyncGenerator[SSEEvent, None]:
        """Execute the full research pipeline, yielding frames throughout."""
        pipeline_started_at = time.monotonic()
        planning_start = streaming.step_start(
            steps.PLANNING_STEP, steps.PLANNING_TITLE, steps.PLANNING_RUNNING
        )
        snapshot = ResearchSnapshot(created_at=planning_start.timestamp)

        log_service.log_event(
            event_type="research_started",
            message="Deep search started",
            session_id=self.session_id,
            model=self.model,
            depth=self.search_depth,
            topic=topic[:100],
        )
        await self._open_record(prior_run_id, snapshot)

        try:
            # Step 1: Planning
            yield planning_start
            try:
                plan = await self._create_plan(topic)
            except Exception as exc:
                failure = PlanningFailure(f"Research planning failed: {exc}")
                await self._persist_failure(failure)
                yield streaming.step_complete(
                    steps.PLANNING_STEP,
                    steps.PLANNING_TITLE,
                    steps.PLANNING_FAILED,
                    failed=True,
                )
                raise failure from exc

            await self._persist(
                {
                    "research_plan": plan.model_dump(mode="json"),
                    "research_plan_links": snapshot.to_record(),
                }
            )
            log_service.log_research_step(self.run_id, steps.PLANNING_STEP, "completed")
            yield streaming.step_complete(
                steps.PLANNING_STEP, steps.PLANNING_TITLE, steps.PLANNING_DONE
            )
            yield streaming.research_plan(plan)

            # Steps 2-6: Web searches
            await self._persist({"research_status": Phase.SEARCHING.value})
            yield streaming.status_change(Phase.SEARCHING)

            search_results: list[dict[str, Any]] = []
            for index, search_spec in enumerate(plan.searches):
                step = steps.search_step(index)
                started = streaming.step_start(
                    step, steps.search_title(step), steps.search_running(search_spec.query)
                )
                yield started

                record, entry = await self._search_step(step, search_spec, started_at=started.timestamp)
                search_results.append(entry)
                rate = steps.search_progress(step)
                snapshot = snapshot.with_search(record, completion_rate=rate)
                await self._persist(
                    {
                        "research_plan_links": snapshot.to_record(),
                        "search_results": search_results,
                        "research_progress": snapshot.completion_rate,
                    }
                )
                log_service.log_research_step(
                    self.run_id,
                    step,
                    "error" if record.failed else "completed",
                    {"query": search_spec.query, "results": record.result_count, "error": record.error},
                )

                yield streaming.step_complete(
                    step,
                    steps.search_title(step),
                    steps.search_failed(record.error) if record.failed else steps.search_done(record.result_count),
                    data=record.step_data(self.preview_count),
                    failed=record.failed,
                )
                yield streaming.progress(rate)

            # Steps 7-11: Analyses
            await self._persist({"research_status": Phase.ANALYZING.value})
            yield streaming.status_change(Phase.ANALYZING)

            analysis_results: list[dict[str, Any]] = []
            for index, analysis_spec in enumerate(plan.analyses):
                step = steps.analysis_step(index)
                title = steps.analysis_title(step, analysis_spec.type)
                started = streaming.step_start(step, title, analysis_spec.description)
                yield started

                try:
                    result = await self._analysis_step(analysis_spec, search_results)
                except Exception as exc:
                    failed_record = AnalysisLinkRecord(
                        step=step,
                        type=analysis_spec.type,
                        description=analysis_spec.description,
                        status="failed",
                        error=str(exc),
                        started_at=started.timestamp,
                    )
                    snapshot = snapshot.with_analysis(
                        failed_record, completion_rate=snapshot.completion_rate
                    )
                    failure = AnalysisFailure(
                        f"Analysis {index + 1} ({analysis_spec.type}) failed: {exc}", step=step
                    )
                    await self._persist_failure(
                        failure, {"research_plan_links": snapshot.to_record()}
                    )
                    log_service.log_research_step(self.run_id, step, "error", {"error": str(exc)})
                    yield streaming.step_complete(
                        step,
                        title,
                        steps.analysis_failed(str(exc)),
                        data=failed_record.step_data(self.preview_count),
                        failed=True,
                    )
                    raise failure from exc

                record = self._analysis_record(step, analysis_spec, result, started_at=started.timestamp)
                analysis_results.append(
                    {
                        "type": analysis_spec.type,
                        "description": analysis_spec.description,
                        "result": result.model_dump(mode="json"),
                    }
                )
                rate = steps.analysis_progress(index + 1)
                snapshot = snapshot.with_analysis(record, completion_rate=rate)
                await self._persist(
                    {
                        "research_plan_links": snapshot.to_record(),
                        "analysis_results": analysis_results,
                        "research_progress": snapshot.completion_rate,
                    }
                )
                log_service.log_research_step(
                    self.run_id, step, "completed", {"type": analysis_spec.type, "findings": record.findings_count}
                )

                yield streaming.step_complete(
                    step,
                    title,
                    steps.analysis_done(record.findings_count),
                    data=record.step_data(self.preview_count),
                )
                yield streaming.progress(rate)

            # Step 12: Final report
            report_start = streaming.step_start(
                steps.REPORT_STEP, steps.REPORT_TITLE, steps.REPORT_RUNNING
            )
            snapshot = snapshot.with_report_started(report_start.timestamp)
            await self._persist(
                {
                    "research_plan_links": snapshot.to_record(),
                    "research_status": Phase.REPORTING.value,
                }
            )
            yield report_start
            yield streaming.status_change(Phase.REPORTING)

            report_text = ""
            try:
                sources = build_report_sources(search_results, analysis_results)
                prompt = self._build_report_prompt(topic, search_results, analysis_results, sources)
                async for fragment in self._llm().stream_text(
                    prompt,
                    model=self.model,
                    temperature=settings.report_temperature,
                    max_tokens=settings.report_max_tokens,
                    caller="orchestrator.report",
                ):
                    report_text += fragment
                    yield streaming.report_chunk(fragment)
            except Exception as exc:
                failure = ReportFailure(f"Report generation failed: {exc}")
                await self._persist_failure(failure)
                yield streaming.step_complete(
                    steps.REPORT_STEP,
                    steps.REPORT_TITLE,
                    steps.REPORT_FAILED,
                    failed=True,
                )
                raise failure from exc

            full_report = report_text + format_sources_section(sources)
            snapshot = snapshot.completed()
            await self._persist(
                {
                    "content": full_report,
                    "citation_sources": [s.model_dump(mode="json") for s in sources],
                    "research_plan_links": snapshot.to_record(),
                    "research_status": Phase.COMPLETE.value,
                    "research_progress": 100,
                    "research_steps": {
                        "planning": True,
                        "searching": True,
                        "analyzing": True,
                        "complete": True,
                    },
                }
            )
            log_service.log_research_step(
                self.run_id, steps.REPORT_STEP, "completed", {"sources": len(sources)}
            )

            yield streaming.step_complete(
                steps.REPORT_STEP,
                steps.REPORT_TITLE,
                steps.REPORT_DONE,
                data={"sourceCount": len(sources)},
            )
            yield streaming.report_complete(full_report, sources)
            yield streaming.progress(100)
            yield streaming.status_change(Phase.COMPLETE)

            log_service.log_event(
                event_type="research_complete",
                message="Deep search completed",
                session_id=self.session_id,
                message_id=self.message_id,
                sources=len(sources),
                total_links=snapshot.total_links,
                runtime_ms=int((time.monotonic() - pipeline_started_at) * 1000),
            )
        except StepFailure as e:
            await self._persist_failure(e)
            log_service.log_event(
                event_type="research_failed",
                message=str(e),
                session_id=self.session_id,
                message_id=self.message_id,
                step=e.step,
            )
            yield streaming.error(str(e), step=e.step)
        except Exception as e:
            message = f"Research failed: {e}"
            await self._persist({"research_status": "error", "research_error": message})
            log_service.logger.exception("Unhandled error in deep search run")
            yield streaming.error(message)
