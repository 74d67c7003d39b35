from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from deepsearch.config import settings


class ResearchStore(Protocol):
    async def create_message(self, session_id: str, role: str, content: str = "", **fields: Any) -> dict[str, Any]: ...
    async def update_message(self, message_id: str, updates: dict[str, Any]) -> None: ...
    async def get_message(self, message_id: str) -> dict[str, Any] | None: ...
    async def get_messages(self, session_id: str) -> list[dict[str, Any]]: ...


class InMemoryResearchStore:
    """Process-local store for CLI runs and tests.

    Reads return deep copies taken under the lock, so a reader never sees a
    half-applied update.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_message(self, session_id: str, role: str, content: str = "", **fields: Any) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            "session_id": str(session_id),
            "role": role,
            "content": content,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **copy.deepcopy(fields),
        }
        async with self._lock:
            self._rows[row["id"]] = row
            return copy.deepcopy(row)

    async def update_message(self, message_id: str, updates: dict[str, Any]) -> None:
        async with self._lock:
            row = self._rows.get(str(message_id))
            if row is None:
                raise KeyError(f"Message not found: {message_id}")
            row.update(copy.deepcopy(updates))

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        async with self._lock:
            row = self._rows.get(str(message_id))
            return copy.deepcopy(row) if row is not None else None

    async def get_messages(self, session_id: str) -> list[dict[str, Any]]:
        async with self._lock:
            rows = [r for r in self._rows.values() if r["session_id"] == str(session_id)]
            return copy.deepcopy(sorted(rows, key=lambda r: r["created_at"]))


_store: ResearchStore | None = None


def get_research_store() -> ResearchStore:
    global _store
    if _store is None:
        backend = settings.store_backend.lower().strip()
        if backend == "memory":
            _store = InMemoryResearchStore()
        elif backend == "supabase":
            from deepsearch.services.supabase import SupabaseResearchStore

            _store = SupabaseResearchStore()
        else:
            raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    return _store
