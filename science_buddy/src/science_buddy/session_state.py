"""
Session State Data Model

Defines the Session and Message dataclasses for conversation state.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class SessionModality(str, Enum):
    """Which surface a session belongs to. Persisted with the session."""
    TEXT = "text"
    VOICE = "voice"
    DOCUMENT = "document"


class SessionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    DELETED = "deleted"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """A single conversation turn. Owned by exactly one Session."""
    role: MessageRole
    text: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    # Display-only tag ("text" or "voice")
    type_tag: Optional[str] = None
    # Backing model that produced an assistant reply
    model: Optional[str] = None
    # True for synthetic outage replies
    failed: bool = False

    @classmethod
    def user(cls, text: str, type_tag: Optional[str] = None) -> "Message":
        return cls(role=MessageRole.USER, text=text, type_tag=type_tag)

    @classmethod
    def assistant(
        cls,
        text: str,
        model: Optional[str] = None,
        failed: bool = False,
        type_tag: Optional[str] = None
    ) -> "Message":
        return cls(role=MessageRole.ASSISTANT, text=text, model=model, failed=failed, type_tag=type_tag)

    def to_provider_message(self) -> dict:
        return {"role": self.role.value, "content": self.text}


@dataclass
class Session:
    """
    Conversation session.

    The in-memory copy is authoritative for the current turn. ``persisted_count``
    tracks how many messages the durable copy is known to hold and
    ``pending_sync`` flags an in-memory copy that is ahead of the durable one.
    """
    user_id: str
    modality: SessionModality = SessionModality.TEXT
    id: Optional[str] = None
    title: str = ""
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    status: SessionStatus = SessionStatus.DRAFT
    # Pre-extracted document text for document sessions
    source_text: Optional[str] = None
    persisted_count: int = 0
    pending_sync: bool = False
    # Serializes turns; lives on the session so a draft keeps it through promotion
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, compare=False, repr=False)

    @property
    def is_draft(self) -> bool:
        return self.status == SessionStatus.DRAFT

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


@dataclass
class StudentProfile:
    """User-supplied (or inferred) personalization data."""
    name: Optional[str] = None
    interests: Optional[str] = None

    def directive(self) -> Optional[str]:
        """Render the free-text personalization directive, if any."""
        if not self.name and not self.interests:
            return None
        name = self.name or "the student"
        interests = self.interests or "General Science"
        return (
            f"Adapt your language and analogies specifically for {name}, "
            f"whose interests and context are: {interests}."
        )
