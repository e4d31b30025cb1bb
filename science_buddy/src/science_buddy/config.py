"""
Engine Configuration

All tunables for the conversation engine, read from environment variables.

Usage:
    from science_buddy.config import EngineConfig
    config = EngineConfig.from_env()
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


DEFAULT_MODEL_CHAIN = [
    "llama-3.3-70b-versatile",
    "qwen/qwen3-32b",
    "llama-3.1-8b-instant",
]


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class EngineConfig:
    """
    Centralised engine configuration.

    Values are read from the environment at instantiation time so tests can
    override them with ``monkeypatch.setenv`` or by passing keyword arguments.
    """

    # Provider
    provider_base_url: str = field(
        default_factory=lambda: os.getenv("PROVIDER_BASE_URL", "https://api.groq.com/openai/v1")
    )
    provider_api_key: str = field(default_factory=lambda: os.getenv("GROQ_API_KEY", ""))
    # Row name in the app_secrets table, used when no key is set in the environment
    provider_secret_name: str = field(
        default_factory=lambda: os.getenv("PROVIDER_SECRET_NAME", "GROQ_API_KEY")
    )
    # Highest capability first, most available last
    model_chain: List[str] = field(
        default_factory=lambda: _env_list("GENERATION_MODELS", DEFAULT_MODEL_CHAIN)
    )
    max_tokens: int = field(default_factory=lambda: int(os.getenv("MAX_TOKENS", "4096")))

    # Sampling
    conversational_temperature: float = 0.7
    voice_temperature: float = 0.9
    document_temperature: float = 0.5
    structured_temperature: float = 0.3

    # Rate-limit recovery
    rate_limit_backoff_seconds: float = field(
        default_factory=lambda: float(os.getenv("RATE_LIMIT_BACKOFF_SECONDS", "1.2"))
    )
    rate_limit_retries: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_RETRIES", "1"))
    )

    # Prompt bounds
    history_window: int = field(default_factory=lambda: int(os.getenv("HISTORY_WINDOW", "30")))
    context_list_limit: int = 5
    document_excerpt_chars: int = 15000
    title_prefix_chars: int = 30

    # Context aggregation
    context_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("CONTEXT_TIMEOUT_SECONDS", "5.0"))
    )
    context_cache_ttl_seconds: float = field(
        default_factory=lambda: float(os.getenv("CONTEXT_CACHE_TTL_SECONDS", "30"))
    )

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Load ``.env`` (if present) and build a config from the environment."""
        load_dotenv()
        return cls(**overrides)

    def validate(self) -> None:
        """Raise ``ValueError`` if the configuration cannot drive a conversation."""
        if not self.model_chain:
            raise ValueError("GENERATION_MODELS must name at least one model")
        if self.rate_limit_retries < 0:
            raise ValueError("RATE_LIMIT_RETRIES must not be negative")
        if self.history_window < 0:
            raise ValueError("HISTORY_WINDOW must not be negative")
        if not 1 <= self.context_list_limit <= 5:
            raise ValueError("context_list_limit must be between 1 and 5")
