"""Tests for API routes."""
from __future__ import annotations

import asyncio
import functools
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.api.deps import get_store
from deepsearch.client.reducer import fold
from deepsearch.client.stream import iter_frames
from deepsearch.main import app
from deepsearch.services.memory_store import InMemoryResearchStore
from fakes import FakeLLM


@pytest.fixture
def memory_store():
    return InMemoryResearchStore()


@pytest.fixture
def client(memory_store):
    app.dependency_overrides[get_store] = lambda: memory_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed(store, *args, **kwargs):
    return asyncio.run(store.create_message(*args, **kwargs))


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "deepsearch"}


@pytest.mark.parametrize(
    "payload",
    [
        {"sessionId": "s-1"},
        {"topic": "Quantum Computing"},
        {"topic": "   ", "sessionId": "s-1"},
    ],
)
def test_start_requires_topic_and_session(client, payload):
    response = client.post("/api/deep-search", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"] == "Topic and sessionId are required"


def test_start_rejects_unknown_depth(client):
    response = client.post(
        "/api/deep-search", json={"topic": "Qubits", "sessionId": "s-1", "depth": "extreme"}
    )
    assert response.status_code == 422


def test_stream_then_recover(client, memory_store, fake_search):
    orchestrator_cls = functools.partial(ResearchOrchestrator, llm=FakeLLM())
    with patch("deepsearch.api.routes.deep_search.ResearchOrchestrator", new=orchestrator_cls):
        response = client.post(
            "/api/deep-search",
            json={"topic": "Quantum Computing", "sessionId": "s-1", "depth": "basic"},
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    message_id = response.headers["x-message-id"]

    frames = list(iter_frames(response.text.splitlines()))
    live = fold(frames)
    assert frames[0].event.value == "step_start"
    assert live.phase.value == "complete"
    assert live.progress == 100

    recovered = client.get(f"/api/deep-search/{message_id}/recovery")
    assert recovered.status_code == 200
    body = recovered.json()
    assert body["recoverable"] is True
    assert body["messageId"] == message_id
    assert body["status"] == "complete"
    assert body["state"] == live.to_dict()

    session = client.get("/api/sessions/s-1/research")
    assert session.status_code == 200
    assert session.json()["state"] == live.to_dict()


def test_recovery_unknown_message_is_404(client):
    response = client.get("/api/deep-search/does-not-exist/recovery")
    assert response.status_code == 404


def test_recovery_without_research_data(client, memory_store):
    row = _seed(memory_store, "s-1", "assistant", "", research_status="planning")
    response = client.get(f"/api/deep-search/{row['id']}/recovery")
    assert response.status_code == 200
    assert response.json()["recoverable"] is False
    assert response.json()["state"] is None


def test_session_recovery_unknown_session_is_404(client):
    assert client.get("/api/sessions/nope/research").status_code == 404


def test_session_recovery_skips_when_last_message_is_from_user(client, memory_store):
    _seed(
        memory_store,
        "s-1",
        "assistant",
        "",
        research_plan_links={"searches": [{"step": 2, "query": "q", "priority": 1}]},
        research_status="searching",
    )
    _seed(memory_store, "s-1", "user", "a new question")

    response = client.get("/api/sessions/s-1/research")
    assert response.status_code == 200
    assert response.json() == {"recoverable": False, "messageId": None, "status": None, "state": None}


def test_session_recovery_of_running_search(client, memory_store):
    row = _seed(
        memory_store,
        "s-1",
        "assistant",
        "",
        research_plan={"searches": [], "analyses": []},
        research_plan_links={
            "created_at": "2026-01-01T00:00:00+00:00",
            "searches": [
                {"step": 2, "query": "q", "priority": 1, "result_count": 0, "started_at": "2026-01-01T00:00:01+00:00"}
            ],
            "completion_rate": 12,
        },
        research_status="searching",
    )

    body = client.get("/api/sessions/s-1/research").json()

    assert body["recoverable"] is True
    assert body["messageId"] == row["id"]
    assert body["state"]["phase"] == "searching"
    assert body["state"]["progress"] == 12
    assert [s["step"] for s in body["state"]["orderedSteps"]] == [1, 2]
