"""Supabase persistence for research messages.

A research run owns one assistant row in the messages table. The row holds
the plan, the growing ``research_plan_links`` snapshot, status, progress and,
once the run completes, the final report and its citation list.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any
from uuid import UUID

from supabase import Client, create_client

from deepsearch.config import settings
from deepsearch.services import logger as log_service
from deepsearch.services.env_safety import sanitize_ssl_keylogfile

JSON_COLUMNS = (
    "research_plan",
    "research_plan_links",
    "search_results",
    "analysis_results",
    "research_steps",
)


def get_client() -> Client:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
    sanitize_ssl_keylogfile()
    return create_client(settings.supabase_url, settings.supabase_anon_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


def _coerce_json(value: Any) -> Any:
    """Normalize legacy JSON-string columns into Python objects."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    for column in JSON_COLUMNS:
        if column in row:
            row[column] = _coerce_json(row[column])
    if "citation_sources" in row:
        sources = _coerce_json(row["citation_sources"])
        row["citation_sources"] = sources if isinstance(sources, list) else None
    return row


def _table() -> Any:
    return client().table(settings.messages_table)


# --- Messages ---


async def create_message(session_id: str | UUID, role: str, content: str = "", **fields: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "session_id": str(session_id),
        "role": role,
        "content": content,
        **fields,
    }
    result = await _execute(_table().insert(row))
    log_service.log_db_operation("insert", settings.messages_table, "success", details=f"session={session_id}")
    return _normalize_row(result.data[0])


async def update_message(message_id: str | UUID, updates: dict[str, Any]) -> None:
    await _execute(_table().update(updates).eq("id", str(message_id)))
    log_service.log_db_operation(
        "update",
        settings.messages_table,
        "success",
        details=f"id={message_id} fields={sorted(updates)}",
    )


async def get_message(message_id: str | UUID) -> dict[str, Any] | None:
    result = await _execute(_table().select("*").eq("id", str(message_id)))
    return _normalize_row(result.data[0]) if result.data else None


async def get_messages(session_id: str | UUID) -> list[dict[str, Any]]:
    result = await _execute(
        _table().select("*").eq("session_id", str(session_id)).order("created_at")
    )
    return [_normalize_row(row) for row in result.data or []]


class SupabaseResearchStore:
    """``ResearchStore`` backed by the module-level Supabase helpers."""

    async def create_message(self, session_id: str, role: str, content: str = "", **fields: Any) -> dict[str, Any]:
        return await create_message(session_id, role, content, **fields)

    async def update_message(self, message_id: str, updates: dict[str, Any]) -> None:
        await update_message(message_id, updates)

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        return await get_message(message_id)

    async def get_messages(self, session_id: str) -> list[dict[str, Any]]:
        return await get_messages(session_id)
