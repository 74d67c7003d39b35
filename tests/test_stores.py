from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deepsearch.services import memory_store, supabase
from deepsearch.services.memory_store import InMemoryResearchStore, get_research_store


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_create_update_and_read(self, store):
        row = await store.create_message("s-1", "assistant", "", research_status="planning")
        await store.update_message(row["id"], {"research_status": "searching", "research_progress": 12})

        fetched = await store.get_message(row["id"])
        assert fetched["research_status"] == "searching"
        assert fetched["research_progress"] == 12
        assert fetched["session_id"] == "s-1"

    @pytest.mark.asyncio
    async def test_reads_are_isolated_copies(self, store):
        snapshot = {"searches": [{"step": 2}]}
        row = await store.create_message("s-1", "assistant", "", research_plan_links=snapshot)
        snapshot["searches"].append({"step": 3})

        fetched = await store.get_message(row["id"])
        fetched["research_plan_links"]["searches"].clear()

        again = await store.get_message(row["id"])
        assert again["research_plan_links"] == {"searches": [{"step": 2}]}

    @pytest.mark.asyncio
    async def test_update_unknown_message_raises(self, store):
        with pytest.raises(KeyError):
            await store.update_message("missing", {"content": "x"})

    @pytest.mark.asyncio
    async def test_messages_are_scoped_to_session_in_creation_order(self, store):
        first = await store.create_message("s-1", "user", "topic")
        await store.create_message("s-2", "user", "other")
        second = await store.create_message("s-1", "assistant", "")

        messages = await store.get_messages("s-1")
        assert [m["id"] for m in messages] == [first["id"], second["id"]]
        assert await store.get_message("nope") is None


class TestStoreFactory:
    def test_memory_backend(self):
        with patch.object(memory_store, "_store", None), \
                patch("deepsearch.services.memory_store.settings") as mock_settings:
            mock_settings.store_backend = "memory"
            assert isinstance(get_research_store(), InMemoryResearchStore)

    def test_supabase_backend(self):
        with patch.object(memory_store, "_store", None), \
                patch("deepsearch.services.memory_store.settings") as mock_settings:
            mock_settings.store_backend = "supabase"
            assert isinstance(get_research_store(), supabase.SupabaseResearchStore)

    def test_unknown_backend(self):
        with patch.object(memory_store, "_store", None), \
                patch("deepsearch.services.memory_store.settings") as mock_settings:
            mock_settings.store_backend = "redis"
            with pytest.raises(ValueError):
                get_research_store()


class TestSupabaseStore:
    def test_get_client_requires_configuration(self):
        with patch("deepsearch.services.supabase.settings") as mock_settings:
            mock_settings.supabase_url = ""
            mock_settings.supabase_anon_key = ""
            with pytest.raises(RuntimeError):
                supabase.get_client()

    def test_normalize_row_parses_legacy_json_strings(self):
        row = supabase._normalize_row(
            {
                "id": "m-1",
                "research_plan_links": json.dumps({"searches": []}),
                "search_results": "not json",
                "citation_sources": json.dumps([{"url": "https://a.example.com"}]),
            }
        )
        assert row["research_plan_links"] == {"searches": []}
        assert row["search_results"] is None
        assert row["citation_sources"] == [{"url": "https://a.example.com"}]

    @pytest.mark.asyncio
    async def test_update_message_targets_row_by_id(self):
        table = MagicMock()
        execute = AsyncMock(return_value=MagicMock(data=[]))
        with patch("deepsearch.services.supabase._table", return_value=table), \
                patch("deepsearch.services.supabase._execute", new=execute):
            await supabase.SupabaseResearchStore().update_message("m-1", {"research_progress": 35})

        table.update.assert_called_once_with({"research_progress": 35})
        table.update.return_value.eq.assert_called_once_with("id", "m-1")
        execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_message_returns_normalized_row(self):
        table = MagicMock()
        inserted = {"id": "m-1", "session_id": "s-1", "research_plan_links": '{"searches": []}'}
        execute = AsyncMock(return_value=MagicMock(data=[inserted]))
        with patch("deepsearch.services.supabase._table", return_value=table), \
                patch("deepsearch.services.supabase._execute", new=execute):
            row = await supabase.create_message("s-1", "assistant", "", research_status="planning")

        sent = table.insert.call_args.args[0]
        assert sent["role"] == "assistant"
        assert sent["research_status"] == "planning"
        assert row["research_plan_links"] == {"searches": []}

    @pytest.mark.asyncio
    async def test_get_message_returns_none_when_missing(self):
        execute = AsyncMock(return_value=MagicMock(data=[]))
        with patch("deepsearch.services.supabase._table", return_value=MagicMock()), \
                patch("deepsearch.services.supabase._execute", new=execute):
            assert await supabase.get_message("m-404") is None
