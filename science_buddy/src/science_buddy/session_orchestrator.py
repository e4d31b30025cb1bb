"""
Session Orchestrator

Drives one user's conversation surface (text chat, voice or a document) through
the session lifecycle:

    DRAFT ──first send──▶ ACTIVE ──send──▶ ACTIVE ──delete──▶ DELETED

Each send runs:
1. optimistic append of the user message
2. Context Aggregator → Prompt Assembler → Generation Gateway
3. append of the reply (or a synthetic failure reply)
4. durable write of the full session

Sends on the same session are serialized. Title generation for a newly promoted
draft runs as a tracked background task.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from science_buddy.config import EngineConfig
from science_buddy.context_aggregator import ContextAggregator
from science_buddy.exceptions import PersistenceError, SessionNotFoundError
from science_buddy.generation_gateway import GenerationGateway, GenerationRequest, GenerationResult
from science_buddy.logger import get_logger
from science_buddy.prompt_assembler import Persona, PromptAssembler
from science_buddy.session_state import (
    Message,
    Session,
    SessionModality,
    SessionStatus,
    StudentProfile,
    new_id,
    utc_now,
)
from science_buddy.session_store import SessionStore

logger = get_logger(__name__)

FAILURE_REPLIES: Dict[Persona, str] = {
    Persona.TUTOR: "My brain is buffering... can you try asking that again? 🧠",
    Persona.VOICE: "I'm not sure I heard that correctly. Could you say that again?",
    Persona.DOCUMENT: "I couldn't process that right now. Please try asking again.",
}

SAVE_FAILED_NOTICE = "Your chat could not be saved. It will be saved again with your next message."

TITLE_PROMPT = (
    'Summarize this message into a short, 3-5 word title for a chat session. '
    'Do not use quotes. Message: "{message}"'
)


def provisional_title(text: str, limit: int = 30) -> str:
    """First ``limit`` characters of the message, with ``...`` when cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def clean_generated_title(text: Optional[str]) -> str:
    if not text:
        return ""
    return text.strip().strip('"').strip("'").strip()


@dataclass
class TurnResult:
    """Outcome of one send."""
    session: Session
    user_message: Message
    assistant_message: Message
    model: Optional[str]
    failed: bool
    persisted: bool
    notice: Optional[str] = None


class SessionOrchestrator:
    """
    Conversation state machine for one user and one modality.

    Args:
        user_id: Owner of every session handled here
        modality: Surface this orchestrator serves (text, voice or document)
        store: Session persistence
        aggregator: Student context source
        assembler: Prompt builder
        gateway: Model fallback chain
        config: Engine configuration
        profile: Optional personalization data
    """

    def __init__(
        self,
        user_id: str,
        modality: SessionModality,
        store: SessionStore,
        aggregator: ContextAggregator,
        assembler: PromptAssembler,
        gateway: GenerationGateway,
        config: EngineConfig,
        profile: Optional[StudentProfile] = None
    ):
        self.user_id = user_id
        self.modality = modality
        self.store = store
        self.aggregator = aggregator
        self.assembler = assembler
        self.gateway = gateway
        self.config = config
        self.profile = profile

        self.sessions: List[Session] = []
        self.active: Session = store.create_draft(user_id, modality)
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def persona(self) -> Persona:
        return Persona.for_modality(self.modality)

    # ── Session list management ────────────────────────────────────────────

    async def load(self, initial_session_id: Optional[str] = None) -> List[Session]:
        """
        Load the user's sessions of this modality.

        The session named by ``initial_session_id`` becomes active when it
        exists; otherwise a fresh draft is active.

        Raises:
            PersistenceError: If the store read fails
        """
        self.sessions = await self.store.list_sessions(self.user_id, self.modality)
        self.active = self.store.create_draft(self.user_id, self.modality)

        if initial_session_id:
            match = self._find(initial_session_id)
            if match is not None:
                self.active = match
            else:
                logger.warning(f"⚠️ [SessionOrchestrator] Session {initial_session_id} not found, starting a draft")

        logger.info(
            f"💬 [SessionOrchestrator] Loaded {len(self.sessions)} {self.modality.value} sessions",
            {"user_id": self.user_id, "active": self.active.id or "draft"}
        )
        return self.sessions

    def new_draft(self) -> Session:
        """Make a fresh, unpersisted session active."""
        self.active = self.store.create_draft(self.user_id, self.modality)
        return self.active

    def open_document(self, source_text: str, title: Optional[str] = None) -> Session:
        """Start a draft document session over pre-extracted text."""
        if self.modality != SessionModality.DOCUMENT:
            raise ValueError("open_document requires a document orchestrator")
        if not source_text or not source_text.strip():
            raise ValueError("Document text is empty")
        draft = self.store.create_draft(self.user_id, SessionModality.DOCUMENT, source_text=source_text)
        if title:
            draft.title = title.strip()
        self.active = draft
        logger.info(f"📄 [SessionOrchestrator] Opened document draft ({len(source_text)} chars)")
        return draft

    def select_session(self, session_id: str) -> Session:
        """
        Make a loaded session active.

        Raises:
            SessionNotFoundError: If no loaded session has this identifier
        """
        session = self._find(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        self.active = session
        return session

    def update_profile(self, profile: Optional[StudentProfile]) -> None:
        """Replace the personalization data used from the next turn on."""
        self.profile = profile
        self.aggregator.invalidate(self.user_id)

    def _find(self, session_id: str) -> Optional[Session]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    # ── Turns ──────────────────────────────────────────────────────────────

    def _promote(self, session: Session, first_text: str) -> bool:
        """
        Give a draft its durable identity and put it at the head of the list.

        Returns:
            True when a generated title should replace the provisional one
        """
        session.id = new_id()
        session.created_at = utc_now()
        session.status = SessionStatus.ACTIVE
        wants_title = not session.title
        if wants_title:
            session.title = provisional_title(first_text, self.config.title_prefix_chars)
        self.sessions.insert(0, session)
        logger.info(f"🆕 [SessionOrchestrator] Draft promoted to session {session.id}", {"title": session.title})
        return wants_title

    def _temperature(self) -> Optional[float]:
        if self.persona == Persona.VOICE:
            return self.config.voice_temperature
        if self.persona == Persona.DOCUMENT:
            return self.config.document_temperature
        return None

    async def send(self, text: str) -> TurnResult:
        """
        Run one turn against the active session.

        Args:
            text: The student's message

        Returns:
            TurnResult with the reply and persistence outcome

        Raises:
            ValueError: If the message is empty
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Message is empty")

        session = self.active
        async with session.turn_lock:
            if session.status == SessionStatus.DELETED:
                raise SessionNotFoundError("The active session was deleted")
            if session.is_draft and self._promote(session, text):
                self._schedule_title(session, text)

            type_tag = "voice" if self.modality == SessionModality.VOICE else "text"
            user_message = Message.user(text, type_tag=type_tag)
            session.messages.append(user_message)

            result: Optional[GenerationResult] = None
            try:
                snapshot = await self.aggregator.aggregate(self.user_id, self.profile)
                messages = self.assembler.assemble(
                    self.persona,
                    snapshot,
                    session.messages,
                    user_message,
                    document_text=session.source_text,
                )
                result = await self.gateway.generate(GenerationRequest(
                    messages=messages,
                    temperature=self._temperature(),
                    purpose=f"{self.persona.value} turn",
                ))
            except Exception as e:
                # The user message is already in the session, so it still gets a reply
                logger.error(f"❌ [SessionOrchestrator] Turn pipeline failed for session {session.id}", error=e)

            if result is not None and result.ok:
                reply = Message.assistant(result.text, model=result.model, type_tag=type_tag)
            else:
                if result is not None:
                    logger.warning(
                        f"⚠️ [SessionOrchestrator] Generation failed for session {session.id}",
                        {"reason": result.failure_reason}
                    )
                reply = Message.assistant(FAILURE_REPLIES[self.persona], failed=True, type_tag=type_tag)
            session.messages.append(reply)

            persisted = True
            notice = None
            try:
                await self.store.persist(session)
            except PersistenceError as e:
                persisted = False
                notice = SAVE_FAILED_NOTICE
                logger.error(f"❌ [SessionOrchestrator] Session {session.id} kept in memory only.", error=e)

        model = result.model if result is not None else None
        logger.debug(
            "💬 [SessionOrchestrator] Turn complete",
            {"session": session.id, "model": model, "messages": len(session.messages)}
        )
        return TurnResult(
            session=session,
            user_message=user_message,
            assistant_message=reply,
            model=model,
            failed=reply.failed,
            persisted=persisted,
            notice=notice,
        )

    async def flush_pending(self) -> List[Session]:
        """Retry durable writes for sessions whose in-memory copy is ahead."""
        return await self.store.flush_pending(self.sessions)

    # ── Titles ─────────────────────────────────────────────────────────────

    def _schedule_title(self, session: Session, first_text: str) -> None:
        task = asyncio.create_task(self._generate_title(session, first_text))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _generate_title(self, session: Session, first_text: str) -> None:
        try:
            result = await self.gateway.generate(GenerationRequest(
                messages=[{"role": "user", "content": TITLE_PROMPT.format(message=first_text)}],
                purpose="title",
            ))
            title = clean_generated_title(result.text) if result.ok else ""
            if not title or session.status == SessionStatus.DELETED:
                return
            session.title = title
            await self.store.persist(session)
            logger.debug(f"🏷️ [SessionOrchestrator] Session {session.id} titled '{title}'")
        except Exception as e:
            # Provisional title stays
            logger.debug(f"🏷️ [SessionOrchestrator] Title generation skipped: {e}")

    async def wait_for_background_tasks(self) -> None:
        """Await every outstanding title task."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ── Deletion ───────────────────────────────────────────────────────────

    async def delete_session(self, session_id: str) -> Session:
        """
        Delete a session. When it was active, the most recent remaining session
        of the same modality becomes active, or a new draft when none is left.

        Returns:
            The session that is active afterwards

        Raises:
            SessionNotFoundError: If no loaded session has this identifier
            PersistenceError: If the durable delete fails
        """
        session = self._find(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        async with session.turn_lock:
            await self.store.delete_session(session)
            self.sessions = [s for s in self.sessions if s is not session]

        if self.active is session:
            replacement = SessionStore.select_replacement(self.sessions, session)
            self.active = replacement or self.store.create_draft(self.user_id, self.modality)

        logger.info(
            f"🗑️ [SessionOrchestrator] Deleted session {session_id}",
            {"active": self.active.id or "draft", "remaining": len(self.sessions)}
        )
        return self.active
