from __future__ import annotations

from deepsearch.services.memory_store import ResearchStore, get_research_store


def get_store() -> ResearchStore:
    """Request-scoped access to the configured research store."""
    return get_research_store()
