from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from deepsearch.api.deps import get_store
from deepsearch.client.reconstruct import reconstruct
from deepsearch.models.schemas import RecoveryResponse
from deepsearch.services.memory_store import ResearchStore

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _has_research_data(message: dict[str, Any]) -> bool:
    links = message.get("research_plan_links")
    if isinstance(links, dict) and (links.get("searches") or links.get("analyses")):
        return True
    return bool(message.get("search_results") or message.get("analysis_results"))


@router.get("/{session_id}/research", response_model=RecoveryResponse)
async def recover_session_research(session_id: str, store: ResearchStore = Depends(get_store)):
    """Recover the research view of a session's latest assistant message.

    Only the last message counts: once the user has asked something new,
    an older research run is no longer shown as in progress.
    """
    messages = await store.get_messages(session_id)
    if not messages:
        raise HTTPException(status_code=404, detail="Session not found")

    last = messages[-1]
    if last.get("role") != "assistant" or not _has_research_data(last):
        return RecoveryResponse(recoverable=False)

    state = reconstruct(last)
    return RecoveryResponse(
        recoverable=state is not None,
        message_id=str(last.get("id")),
        status=last.get("research_status"),
        state=state.to_dict() if state is not None else None,
    )
