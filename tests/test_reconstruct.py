from __future__ import annotations

import pytest

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.client.reconstruct import reconstruct
from deepsearch.client.reducer import fold
from deepsearch.errors import AdapterError
from deepsearch.models.events import EventType
from deepsearch.models.snapshot import ResearchSnapshot
from deepsearch.models.steps import Phase, StepStatus
from deepsearch.services import runner
from fakes import FakeLLM, collect


class TestReconstructFromSnapshot:
    @pytest.mark.asyncio
    async def test_completed_run_matches_live_fold(self, store, fake_search):
        orchestrator = ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM())
        events = await collect(orchestrator)
        record = await store.get_message(orchestrator.message_id)

        live = fold(events)
        recovered = reconstruct(record)

        assert recovered is not None
        assert recovered.progress == live.progress == 100
        assert recovered.phase == live.phase == Phase.COMPLETE
        assert recovered.final_sources == live.final_sources
        assert recovered.to_dict() == live.to_dict()

    @pytest.mark.asyncio
    async def test_failed_search_run_matches_live_fold(self, store, failing_third_search):
        orchestrator = ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM())
        events = await collect(orchestrator)
        record = await store.get_message(orchestrator.message_id)

        recovered = reconstruct(record)

        assert recovered.to_dict() == fold(events).to_dict()
        assert recovered.step(4).status == StepStatus.ERROR
        assert recovered.step(4).data["resultCount"] == 0

    @pytest.mark.asyncio
    async def test_report_failure_is_recovered_as_terminal_error(self, store, fake_search):
        llm = FakeLLM(report_chunks=["# Partial"], report_error=AdapterError("model", "stream dropped"))
        orchestrator = ResearchOrchestrator(session_id="s-1", store=store, llm=llm)
        events = await collect(orchestrator)
        record = await store.get_message(orchestrator.message_id)

        recovered = reconstruct(record)
        live = fold(events)

        assert recovered.phase == live.phase == Phase.COMPLETE
        assert recovered.error == live.error
        assert recovered.step(12).status == StepStatus.ERROR
        assert recovered.steps == live.steps

    @pytest.mark.asyncio
    async def test_disconnect_after_step_three_recovers_persisted_prefix(self, store, fake_search):
        orchestrator = ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM())

        record = None
        async for event in orchestrator.run("Quantum Computing"):
            if event.event == EventType.STEP_COMPLETE and event.data["step"] == 3:
                record = await store.get_message(orchestrator.message_id)
                break

        recovered = reconstruct(record)

        assert [s.step for s in recovered.steps] == [1, 2, 3]
        assert all(s.status == StepStatus.COMPLETED for s in recovered.steps)
        assert recovered.step(4) is None
        assert recovered.phase == Phase.SEARCHING
        assert recovered.progress == 21

    @pytest.mark.asyncio
    async def test_run_continues_after_consumer_stops_draining(self, store, fake_search):
        orchestrator = ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM())
        handle = runner.start_run(orchestrator, "Quantum Computing")

        async for event in handle.events():
            if event.event == EventType.STEP_COMPLETE and event.data["step"] == 3:
                break
        await handle.task

        record = await store.get_message(orchestrator.message_id)
        recovered = reconstruct(record)
        assert recovered.phase == Phase.COMPLETE
        assert recovered.progress == 100
        assert len(recovered.steps) == 12


def test_no_search_or_analysis_data_is_not_recoverable():
    record = {
        "research_plan": {"searches": [], "analyses": []},
        "research_plan_links": ResearchSnapshot().to_record(),
        "research_status": "planning",
    }
    assert reconstruct(record) is None
    assert reconstruct({}) is None


def test_error_status_maps_to_complete_with_message():
    record = {
        "research_plan_links": {
            "searches": [
                {"step": 2, "query": "q", "priority": 1, "status": "completed", "result_count": 0}
            ],
        },
        "research_status": "error",
        "research_error": "Analysis 1 (trend analysis) failed: boom",
        "research_progress": 12,
    }
    state = reconstruct(record)
    assert state.phase == Phase.COMPLETE
    assert state.error == "Analysis 1 (trend analysis) failed: boom"
    assert state.step(1) is None


def test_legacy_record_without_snapshot():
    record = {
        "created_at": "2026-01-01T00:00:00+00:00",
        "research_plan": {"searches": [], "analyses": []},
        "research_status": "complete",
        "research_progress": 100,
        "content": "# Report",
        "citation_sources": [{"title": "A", "url": "https://a.example.com", "relevance": 0.8}],
        "search_results": [
            {
                "type": "web",
                "query": {"query": "quantum error correction", "priority": 1},
                "results": [{"title": "A", "url": "https://a.example.com"}],
            },
            {"type": "web", "query": {"query": "qubits", "priority": 2}, "results": [], "error": "timeout"},
        ],
        "analysis_results": [
            {
                "type": "trend analysis",
                "description": "Trends",
                "result": {
                    "findings": [{"insight": "More qubits", "confidence": 0.9}],
                    "key_sources": [{"title": "A", "url": "https://a.example.com", "relevance": 0.9}],
                },
            }
        ],
    }

    state = reconstruct(record)

    assert [s.step for s in state.steps] == [1, 2, 3, 7, 12]
    assert state.step(2).data["sources"] == [{"title": "A", "url": "https://a.example.com"}]
    assert state.step(3).status == StepStatus.ERROR
    assert state.step(7).data["insights"] == ["More qubits"]
    assert state.step(12).data == {"sourceCount": 1}
    assert state.phase == Phase.COMPLETE
    assert state.progress == 100
    assert state.report_text == "# Report"
