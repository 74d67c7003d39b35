from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.api.deps import get_store
from deepsearch.client.reconstruct import reconstruct
from deepsearch.llm_client import get_model
from deepsearch.models.schemas import DeepSearchRequest, RecoveryResponse
from deepsearch.models.steps import Phase
from deepsearch.services import logger as log_service
from deepsearch.services import runner, streaming
from deepsearch.services.memory_store import ResearchStore

router = APIRouter(prefix="/api/deep-search", tags=["deep-search"])


@router.post("")
async def start_deep_search(request: DeepSearchRequest, store: ResearchStore = Depends(get_store)):
    """Start a deep search and stream its progress frames."""
    topic = (request.topic or "").strip()
    session_id = (request.session_id or "").strip()
    if not topic or not session_id:
        raise HTTPException(status_code=400, detail="Topic and sessionId are required")

    model = request.model or get_model()
    message_id: str | None = None
    try:
        row = await store.create_message(
            session_id,
            "assistant",
            "",
            research_status=Phase.PLANNING.value,
            research_progress=0,
        )
        message_id = str(row["id"])
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to create research message",
            error=str(e),
            session_id=session_id,
        )

    orchestrator = ResearchOrchestrator(
        model=model,
        session_id=session_id,
        depth=request.depth,
        store=store,
    )
    handle = runner.start_run(orchestrator, topic, prior_run_id=message_id)

    headers = {"X-Message-Id": message_id} if message_id else None
    return EventSourceResponse(streaming.sse_messages(handle.events()), headers=headers)


@router.get("/{message_id}/recovery", response_model=RecoveryResponse)
async def recover_deep_search(message_id: str, store: ResearchStore = Depends(get_store)):
    """Rebuild the progress view of a run from its persisted record."""
    message = await store.get_message(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")

    state = reconstruct(message)
    return RecoveryResponse(
        recoverable=state is not None,
        message_id=str(message.get("id", message_id)),
        status=message.get("research_status"),
        state=state.to_dict() if state is not None else None,
    )
