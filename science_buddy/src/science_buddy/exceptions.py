"""
Engine Exceptions

Typed errors raised across the conversation engine.
"""

from enum import Enum
from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class ProviderErrorKind(str, Enum):
    """Failure classes reported by the generation provider."""
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    AUTH = "auth"
    NETWORK = "network"
    OTHER = "other"


class ProviderError(EngineError):
    """A single provider call failed."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str = "",
        status_code: Optional[int] = None
    ):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code


class StructuredOutputError(EngineError):
    """Provider text could not be turned into the requested structure."""


class PersistenceError(EngineError):
    """A durable write against the store failed."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFoundError(EngineError):
    """No session with the requested identifier is loaded."""
