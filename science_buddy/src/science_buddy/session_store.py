"""
Session Store for Conversation Persistence

Owns the sessions of a user: listing, draft creation, appends and deletion.
Durable writes go through a ChatStoreBackend (Supabase or in-memory).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from science_buddy.exceptions import PersistenceError
from science_buddy.session_state import (
    Message,
    MessageRole,
    Session,
    SessionModality,
    SessionStatus,
    new_id,
    utc_now,
)
from science_buddy.store_backend import ChatStoreBackend

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime:
    """Accept epoch milliseconds, ISO strings or datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        if value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utc_now()


class SessionStore:
    """
    Manages session persistence.

    Writes for one session are serialized, and each write snapshots the session
    when it acquires the lock, so the durable message list never shrinks even
    when a background title patch races a turn's write.
    """

    def __init__(self, backend: ChatStoreBackend):
        """
        Initialize SessionStore.

        Args:
            backend: Persistent store boundary
        """
        self.backend = backend
        self._write_locks: Dict[str, asyncio.Lock] = {}

    # ── Record conversion ──────────────────────────────────────────────────

    def message_to_dict(self, message: Message) -> Dict[str, Any]:
        data = {
            "id": message.id,
            "role": message.role.value,
            "text": message.text,
            "timestamp": int(message.created_at.timestamp() * 1000),
        }
        if message.type_tag:
            data["meta"] = {"type": message.type_tag}
        if message.model:
            data["model"] = message.model
        if message.failed:
            data["failed"] = True
        return data

    def dict_to_message(self, data: Dict[str, Any]) -> Message:
        # Older rows use "model" for the assistant role
        role = MessageRole.USER if data.get("role") == "user" else MessageRole.ASSISTANT
        meta = data.get("meta") or {}
        return Message(
            role=role,
            text=data.get("text") or data.get("content") or "",
            id=str(data.get("id") or new_id()),
            created_at=_parse_timestamp(data.get("timestamp")),
            type_tag=meta.get("type"),
            model=data.get("model"),
            failed=bool(data.get("failed", False)),
        )

    def session_to_record(self, session: Session) -> Dict[str, Any]:
        """
        Convert a Session to a store record.

        Args:
            session: Session with an allocated identifier

        Returns:
            Dictionary representation
        """
        record = {
            "id": session.id,
            "user_id": session.user_id,
            "title": session.title,
            "messages": [self.message_to_dict(m) for m in session.messages],
            "created_at": session.created_at.isoformat(),
            "modality": session.modality.value,
        }
        if session.source_text is not None:
            record["source_text"] = session.source_text
        return record

    def record_to_session(self, record: Dict[str, Any]) -> Session:
        messages = [self.dict_to_message(m) for m in record.get("messages") or []]
        return Session(
            user_id=record["user_id"],
            modality=SessionModality(record.get("modality") or SessionModality.TEXT.value),
            id=str(record["id"]),
            title=record.get("title") or "",
            messages=messages,
            created_at=_parse_timestamp(record.get("created_at")),
            status=SessionStatus.ACTIVE,
            source_text=record.get("source_text"),
            persisted_count=len(messages),
        )

    # ── Operations ─────────────────────────────────────────────────────────

    def _lock_for(self, session: Session) -> asyncio.Lock:
        return self._write_locks.setdefault(session.id, asyncio.Lock())

    async def list_sessions(
        self,
        user_id: str,
        modality: Optional[SessionModality] = None
    ) -> List[Session]:
        """
        Load a user's sessions, newest first.

        Args:
            user_id: Owner
            modality: Only sessions carrying this modality tag (all when None)

        Returns:
            List of persisted sessions

        Raises:
            PersistenceError: If the store read fails
        """
        try:
            records = await self.backend.fetch_sessions(user_id, modality)
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error loading sessions: {e}")
            raise PersistenceError(f"Could not load sessions: {e}") from e

        sessions = []
        for record in records:
            try:
                session = self.record_to_session(record)
            except (KeyError, ValueError) as e:
                logger.warning(f"⚠️ [SessionStore] Skipping corrupt session {record.get('id')}: {e}")
                continue
            if modality is None or session.modality == modality:
                sessions.append(session)

        sessions.sort(key=lambda s: s.created_at, reverse=True)
        logger.info(f"✅ [SessionStore] Loaded {len(sessions)} sessions for user {user_id[:20]}")
        return sessions

    def create_draft(
        self,
        user_id: str,
        modality: SessionModality = SessionModality.TEXT,
        source_text: Optional[str] = None
    ) -> Session:
        """Return a new in-memory session with no durable identity."""
        return Session(user_id=user_id, modality=modality, source_text=source_text)

    async def append_message(self, session: Session, message: Message) -> None:
        """
        Append a message and persist the session.

        The in-memory append is kept even when the durable write fails.

        Raises:
            PersistenceError: If the durable write fails
        """
        session.messages.append(message)
        await self.persist(session)

    async def persist(self, session: Session) -> None:
        """
        Upsert the full session.

        Raises:
            PersistenceError: If the durable write fails
        """
        if session.id is None:
            raise ValueError("Cannot persist a draft without an identifier")
        if session.status == SessionStatus.DELETED:
            logger.debug(f"💾 [SessionStore] Skipping write for deleted session {session.id}")
            return

        async with self._lock_for(session):
            # Deleted while this write waited for the lock
            if session.status == SessionStatus.DELETED:
                logger.debug(f"💾 [SessionStore] Skipping write for deleted session {session.id}")
                return
            record = self.session_to_record(session)
            message_count = len(session.messages)
            try:
                await self.backend.upsert_session(record)
            except Exception as e:
                session.pending_sync = True
                logger.warning(f"⚠️ [SessionStore] Error saving session {session.id}: {e}")
                raise PersistenceError(f"Could not save session: {e}", session_id=session.id) from e

            session.persisted_count = max(session.persisted_count, message_count)
            session.pending_sync = session.persisted_count < len(session.messages)
            logger.debug(f"💾 [SessionStore] Saved session {session.id} ({message_count} messages)")

    async def delete_session(self, session: Session) -> None:
        """
        Delete a session from the store.

        Raises:
            PersistenceError: If the durable delete fails
        """
        if session.id is None:
            session.status = SessionStatus.DELETED
            return
        async with self._lock_for(session):
            try:
                await self.backend.delete_session(session.id, session.modality)
            except Exception as e:
                logger.warning(f"⚠️ [SessionStore] Error deleting session {session.id}: {e}")
                raise PersistenceError(f"Could not delete session: {e}", session_id=session.id) from e
            session.status = SessionStatus.DELETED
        self._write_locks.pop(session.id, None)
        logger.info(f"🗑️ [SessionStore] Deleted session {session.id}")

    async def flush_pending(self, sessions: List[Session]) -> List[Session]:
        """
        Retry durable writes for sessions whose in-memory copy is ahead.

        Returns:
            Sessions that are still pending after the retry
        """
        still_pending = []
        for session in sessions:
            if session.id is None or not session.pending_sync:
                continue
            try:
                await self.persist(session)
            except PersistenceError:
                still_pending.append(session)
        return still_pending

    @staticmethod
    def select_replacement(sessions: List[Session], deleted: Session) -> Optional[Session]:
        """
        Pick the session to activate after ``deleted`` is removed.

        Args:
            sessions: Remaining sessions, newest first
            deleted: The session being removed

        Returns:
            Most recent remaining session of the same modality, or None
        """
        for session in sessions:
            if session is not deleted and session.id != deleted.id and session.modality == deleted.modality:
                return session
        return None
