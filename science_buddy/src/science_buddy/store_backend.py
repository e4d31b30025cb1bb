"""
Persistent Store Backends

The engine's boundary to the hosted data store. Every method is async and may
raise; callers decide how to degrade.

Session records are plain dicts:
    {"id", "user_id", "title", "messages", "created_at", "modality", "source_text"}

Supabase layout
───────────────
chat_sessions      text and voice sessions (messages JSON, modality column)
research_projects  document sessions (source_text, chat_history JSON)
users              id, total_points
quiz_progress      user_id, topic, score, created_at
concept_maps       user_id, topic, created_at
community_notes    user_id
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from science_buddy.session_state import SessionModality

logger = logging.getLogger(__name__)

CHAT_TABLE = "chat_sessions"
DOCUMENT_TABLE = "research_projects"


class ChatStoreBackend:
    """Operations the engine requires from the persistent store."""

    async def fetch_sessions(
        self,
        user_id: str,
        modality: Optional[SessionModality] = None
    ) -> List[Dict[str, Any]]:
        """Session records for a user, newest first."""
        raise NotImplementedError

    async def upsert_session(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete_session(self, session_id: str, modality: SessionModality) -> None:
        raise NotImplementedError

    async def fetch_user_rankings(self) -> List[Dict[str, Any]]:
        """All users as ``{"id", "total_points"}``, highest score first."""
        raise NotImplementedError

    async def fetch_recent_quiz_results(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        """Most recent ``{"topic", "score"}`` rows for a user."""
        raise NotImplementedError

    async def fetch_research_titles(self, user_id: str, limit: int) -> List[str]:
        raise NotImplementedError

    async def fetch_saved_topics(self, user_id: str, limit: int) -> List[str]:
        raise NotImplementedError

    async def count_contributions(self, user_id: str) -> int:
        raise NotImplementedError


class InMemoryStoreBackend(ChatStoreBackend):
    """
    Process-local store.

    Used when Supabase is not configured and as the store in tests. Records are
    deep-copied on the way in and out so callers never share state with it.
    """

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.users: List[Dict[str, Any]] = []
        self.quiz_results: List[Dict[str, Any]] = []
        self.saved_topics: List[Dict[str, Any]] = []
        self.contributions: Dict[str, int] = {}

    async def fetch_sessions(
        self,
        user_id: str,
        modality: Optional[SessionModality] = None
    ) -> List[Dict[str, Any]]:
        records = [
            copy.deepcopy(record) for record in self.sessions.values()
            if record["user_id"] == user_id
            and (modality is None or record.get("modality") == modality.value)
        ]
        records.sort(key=lambda r: r["created_at"], reverse=True)
        return records

    async def upsert_session(self, record: Dict[str, Any]) -> None:
        self.sessions[record["id"]] = copy.deepcopy(record)

    async def delete_session(self, session_id: str, modality: SessionModality) -> None:
        self.sessions.pop(session_id, None)

    async def fetch_user_rankings(self) -> List[Dict[str, Any]]:
        return sorted(
            (dict(user) for user in self.users),
            key=lambda u: u.get("total_points") or 0,
            reverse=True
        )

    async def fetch_recent_quiz_results(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        rows = [r for r in self.quiz_results if r["user_id"] == user_id]
        rows.sort(key=lambda r: r.get("created_at", ""), reverse=True)
        return [{"topic": r["topic"], "score": r.get("score")} for r in rows[:limit]]

    async def fetch_research_titles(self, user_id: str, limit: int) -> List[str]:
        records = await self.fetch_sessions(user_id, SessionModality.DOCUMENT)
        return [r["title"] for r in records[:limit]]

    async def fetch_saved_topics(self, user_id: str, limit: int) -> List[str]:
        rows = [r for r in self.saved_topics if r["user_id"] == user_id]
        rows.sort(key=lambda r: r.get("created_at", ""), reverse=True)
        return [r["topic"] for r in rows[:limit]]

    async def count_contributions(self, user_id: str) -> int:
        return self.contributions.get(user_id, 0)


class SupabaseStoreBackend(ChatStoreBackend):
    """Store backed by the Supabase async client."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    @staticmethod
    def _table_for(modality: SessionModality) -> str:
        return DOCUMENT_TABLE if modality == SessionModality.DOCUMENT else CHAT_TABLE

    @staticmethod
    def _from_document_row(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "title": row.get("title") or "",
            "messages": row.get("chat_history") or [],
            "created_at": row.get("created_at"),
            "modality": SessionModality.DOCUMENT.value,
            "source_text": row.get("source_text"),
        }

    async def fetch_sessions(
        self,
        user_id: str,
        modality: Optional[SessionModality] = None
    ) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []

        if modality != SessionModality.DOCUMENT:
            query = self.supabase.table(CHAT_TABLE).select('*').eq('user_id', user_id)
            if modality is not None:
                query = query.eq('modality', modality.value)
            result = await query.order('created_at', desc=True).execute()
            for row in result.data or []:
                row.setdefault("modality", SessionModality.TEXT.value)
                records.append(row)

        if modality is None or modality == SessionModality.DOCUMENT:
            result = await self.supabase.table(DOCUMENT_TABLE) \
                .select('*') \
                .eq('user_id', user_id) \
                .order('created_at', desc=True) \
                .execute()
            records.extend(self._from_document_row(row) for row in result.data or [])

        if modality is None:
            records.sort(key=lambda r: str(r.get("created_at") or ""), reverse=True)
        return records

    async def upsert_session(self, record: Dict[str, Any]) -> None:
        if record.get("modality") == SessionModality.DOCUMENT.value:
            row = {
                "id": record["id"],
                "user_id": record["user_id"],
                "title": record["title"],
                "source_text": record.get("source_text") or "",
                "chat_history": record["messages"],
                "created_at": record["created_at"],
            }
            await self.supabase.table(DOCUMENT_TABLE).upsert(row).execute()
            return

        row = {
            "id": record["id"],
            "user_id": record["user_id"],
            "title": record["title"],
            "messages": record["messages"],
            "created_at": record["created_at"],
            "modality": record.get("modality", SessionModality.TEXT.value),
        }
        await self.supabase.table(CHAT_TABLE).upsert(row).execute()

    async def delete_session(self, session_id: str, modality: SessionModality) -> None:
        await self.supabase.table(self._table_for(modality)).delete().eq('id', session_id).execute()

    async def fetch_user_rankings(self) -> List[Dict[str, Any]]:
        result = await self.supabase.table('users') \
            .select('id, total_points') \
            .order('total_points', desc=True) \
            .execute()
        return result.data or []

    async def fetch_recent_quiz_results(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        result = await self.supabase.table('quiz_progress') \
            .select('topic, score') \
            .eq('user_id', user_id) \
            .order('created_at', desc=True) \
            .limit(limit) \
            .execute()
        return result.data or []

    async def fetch_research_titles(self, user_id: str, limit: int) -> List[str]:
        result = await self.supabase.table(DOCUMENT_TABLE) \
            .select('title') \
            .eq('user_id', user_id) \
            .order('created_at', desc=True) \
            .limit(limit) \
            .execute()
        return [row["title"] for row in result.data or [] if row.get("title")]

    async def fetch_saved_topics(self, user_id: str, limit: int) -> List[str]:
        result = await self.supabase.table('concept_maps') \
            .select('topic') \
            .eq('user_id', user_id) \
            .order('created_at', desc=True) \
            .limit(limit) \
            .execute()
        return [row["topic"] for row in result.data or [] if row.get("topic")]

    async def count_contributions(self, user_id: str) -> int:
        result = await self.supabase.table('community_notes') \
            .select('id', count='exact') \
            .eq('user_id', user_id) \
            .execute()
        return result.count or 0


def create_store_backend(supabase_client=None) -> ChatStoreBackend:
    """Supabase backend when a client is available, else the in-memory store."""
    if supabase_client is None:
        logger.warning("⚠️ [StoreBackend] Supabase not available, using in-memory store")
        return InMemoryStoreBackend()
    return SupabaseStoreBackend(supabase_client)
