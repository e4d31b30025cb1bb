"""
Unit Tests for the Supabase store backend and client

The Supabase client is replaced with chainable mocks; no network calls are made.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from science_buddy import supabase_client as supabase_module
from science_buddy.session_state import SessionModality
from science_buddy.store_backend import (
    InMemoryStoreBackend,
    SupabaseStoreBackend,
    create_store_backend,
)


def _query(data=None, count=None):
    query = MagicMock()
    for method in ("select", "eq", "order", "limit", "upsert", "delete"):
        getattr(query, method).return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=data, count=count))
    return query


def _client(**tables):
    client = MagicMock()
    client.table.side_effect = lambda name: tables[name]
    return client


class TestSupabaseStoreBackend:

    @pytest.mark.asyncio
    async def test_text_session_upsert_goes_to_chat_sessions(self):
        chat = _query()
        backend = SupabaseStoreBackend(_client(chat_sessions=chat))

        await backend.upsert_session({
            "id": "s1", "user_id": "asha", "title": "Friction", "messages": [],
            "created_at": "2026-03-01T12:00:00+00:00", "modality": "voice",
        })

        row = chat.upsert.call_args.args[0]
        assert row["modality"] == "voice"
        assert row["messages"] == []

    @pytest.mark.asyncio
    async def test_document_session_upsert_goes_to_research_projects(self):
        research = _query()
        backend = SupabaseStoreBackend(_client(research_projects=research))

        await backend.upsert_session({
            "id": "d1", "user_id": "asha", "title": "Plant notes",
            "messages": [{"id": "1", "role": "user", "text": "hi"}],
            "created_at": "2026-03-01T12:00:00+00:00", "modality": "document",
            "source_text": "Photosynthesis...",
        })

        row = research.upsert.call_args.args[0]
        assert row["chat_history"] == [{"id": "1", "role": "user", "text": "hi"}]
        assert row["source_text"] == "Photosynthesis..."
        assert "modality" not in row

    @pytest.mark.asyncio
    async def test_fetch_all_modalities_merges_tables(self):
        chat = _query(data=[{"id": "s1", "user_id": "asha", "title": "t", "messages": [],
                             "created_at": "2026-03-01T10:00:00+00:00"}])
        research = _query(data=[{"id": "d1", "user_id": "asha", "title": "doc", "chat_history": [],
                                 "created_at": "2026-03-01T11:00:00+00:00", "source_text": "x"}])
        backend = SupabaseStoreBackend(_client(chat_sessions=chat, research_projects=research))

        records = await backend.fetch_sessions("asha")

        assert [r["id"] for r in records] == ["d1", "s1"]
        assert records[0]["modality"] == "document"
        # Rows written before the modality column existed are text sessions
        assert records[1]["modality"] == "text"

    @pytest.mark.asyncio
    async def test_fetch_voice_filters_on_modality_column(self):
        chat = _query(data=[])
        backend = SupabaseStoreBackend(_client(chat_sessions=chat))

        await backend.fetch_sessions("asha", SessionModality.VOICE)

        chat.eq.assert_any_call("modality", "voice")

    @pytest.mark.asyncio
    async def test_delete_routes_by_modality(self):
        research = _query()
        backend = SupabaseStoreBackend(_client(research_projects=research))

        await backend.delete_session("d1", SessionModality.DOCUMENT)

        research.delete.assert_called_once()
        research.eq.assert_called_with("id", "d1")

    @pytest.mark.asyncio
    async def test_projections(self):
        backend = SupabaseStoreBackend(_client(
            users=_query(data=[{"id": "rohan", "total_points": 900}]),
            quiz_progress=_query(data=[{"topic": "Cells", "score": 80}]),
            research_projects=_query(data=[{"title": "Plant notes"}, {"title": None}]),
            concept_maps=_query(data=[{"topic": "Combustion"}]),
            community_notes=_query(count=3),
        ))

        assert await backend.fetch_user_rankings() == [{"id": "rohan", "total_points": 900}]
        assert await backend.fetch_recent_quiz_results("asha", 5) == [{"topic": "Cells", "score": 80}]
        assert await backend.fetch_research_titles("asha", 5) == ["Plant notes"]
        assert await backend.fetch_saved_topics("asha", 5) == ["Combustion"]
        assert await backend.count_contributions("asha") == 3

    def test_factory_falls_back_to_memory(self):
        assert isinstance(create_store_backend(None), InMemoryStoreBackend)
        assert isinstance(create_store_backend(MagicMock()), SupabaseStoreBackend)


class TestSupabaseClient:

    @pytest.fixture(autouse=True)
    def reset(self):
        supabase_module.reset_supabase_client()
        yield
        supabase_module.reset_supabase_client()

    @pytest.mark.asyncio
    async def test_missing_environment_raises(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)

        with pytest.raises(ValueError):
            await supabase_module.get_supabase_client()

    @pytest.mark.asyncio
    async def test_client_created_once(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")
        factory = AsyncMock(return_value=MagicMock())
        monkeypatch.setattr(supabase_module, "acreate_client", factory)

        first = await supabase_module.get_supabase_client()
        second = await supabase_module.get_supabase_client()

        assert first is second
        factory.assert_awaited_once_with("https://example.supabase.co", "service-key")
