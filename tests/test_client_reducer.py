from __future__ import annotations

import pytest

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.client.reducer import ClientViewState, fold, reduce
from deepsearch.models.events import EventType, SSEEvent, StatusChange
from deepsearch.models.snapshot import ReportSource
from deepsearch.models.steps import Phase, StepStatus
from deepsearch.services import streaming
from fakes import FakeLLM, collect, make_plan


def test_step_start_sets_phase_by_step_number():
    state = reduce(ClientViewState(), streaming.step_start(1, "Plan", "..."))
    assert state.phase == Phase.PLANNING
    state = reduce(state, streaming.step_start(4, "Search", "..."))
    assert state.phase == Phase.SEARCHING
    state = reduce(state, streaming.step_start(9, "Analysis", "..."))
    assert state.phase == Phase.ANALYZING
    state = reduce(state, streaming.step_start(12, "Report", "..."))
    assert state.phase == Phase.ANALYZING


def test_step_complete_replaces_by_step_number_not_position():
    state = fold(
        [
            streaming.step_start(2, "Web Search 1", "Searching: \"a\""),
            streaming.step_start(3, "Web Search 2", "Searching: \"b\""),
            streaming.step_complete(2, "Web Search 1", "Found 3 sources", data={"resultCount": 3}),
        ]
    )

    assert [s.step for s in state.steps] == [2, 3]
    first = state.step(2)
    assert first.status == StepStatus.COMPLETED
    assert first.description == "Found 3 sources"
    assert first.data == {"resultCount": 3}
    assert state.step(3).status == StepStatus.RUNNING


def test_step_complete_with_error_status():
    state = fold(
        [
            streaming.step_start(4, "Web Search 3", "..."),
            streaming.step_complete(4, "Web Search 3", "Search failed", data={"resultCount": 0}, failed=True),
        ]
    )
    assert state.step(4).status == StepStatus.ERROR


def test_repeated_step_start_does_not_duplicate_step():
    frame = streaming.step_start(2, "Web Search 1", "...")
    state = fold([frame, frame, frame])
    assert len(state.steps) == 1


def test_plan_is_stored_once():
    first = streaming.research_plan(make_plan("First"))
    second = streaming.research_plan(make_plan("Second"))
    state = fold([first, second])
    assert state.plan == first.data["plan"]


def test_progress_is_clamped():
    assert reduce(ClientViewState(), streaming.progress(140)).progress == 100
    assert reduce(ClientViewState(), streaming.progress(-5)).progress == 0


def test_status_change_sets_phase_and_ignores_unknown_values():
    state = reduce(ClientViewState(), streaming.status_change(Phase.REPORTING))
    assert state.phase == Phase.REPORTING

    assert reduce(state, SSEEvent(StatusChange(status="paused"))) is state


def test_report_chunks_accumulate_then_full_report_replaces_them():
    sources = [ReportSource(title="A", url="https://a.example.com", relevance=0.8)]
    state = fold(
        [
            streaming.report_chunk("Hello "),
            streaming.report_chunk("world"),
        ]
    )
    assert state.report_text == "Hello world"

    state = reduce(state, streaming.report_complete("Hello world\n\n## Sources", sources))
    assert state.report_text == "Hello world\n\n## Sources"
    assert state.final_sources == ({"title": "A", "url": "https://a.example.com", "relevance": 0.8},)
    assert state.progress == 100
    assert state.phase == Phase.COMPLETE


def test_error_is_terminal_and_keeps_partial_content():
    state = fold(
        [
            streaming.progress(40),
            streaming.report_chunk("Partial text"),
            streaming.error("Report generation failed: boom", step=12),
        ]
    )
    assert state.phase == Phase.COMPLETE
    assert state.is_terminal
    assert state.error == "Report generation failed: boom"
    assert state.report_text == "Partial text"
    assert state.progress == 40


def test_reduce_does_not_mutate_input_state():
    before = ClientViewState()
    after = reduce(before, streaming.step_start(1, "Plan", "..."))
    assert before.steps == ()
    assert after is not before


class TestLiveRunFold:
    @pytest.mark.asyncio
    async def test_fold_is_idempotent_under_full_replay(self, store, fake_search):
        events = await collect(ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM()))

        once = fold(events)
        assert fold(events) == once
        assert fold(events, once) == once

    @pytest.mark.asyncio
    async def test_every_prefix_is_a_displayable_state(self, store, fake_search):
        events = await collect(ResearchOrchestrator(session_id="s-1", store=store, llm=FakeLLM()))

        state = ClientViewState()
        last_progress = 0
        for index, frame in enumerate(events, 1):
            state = reduce(state, frame)
            assert state == fold(events[:index])
            assert 0 <= state.progress <= 100
            assert state.progress >= last_progress
            numbers = [s.step for s in state.steps]
            assert numbers == sorted(set(numbers))
            last_progress = state.progress

        assert state.phase == Phase.COMPLETE
        assert len(state.steps) == 12
        assert all(s.status == StepStatus.COMPLETED for s in state.steps)
        assert state.report_text == [e for e in events if e.event == EventType.REPORT_COMPLETE][0].data["fullReport"]
