"""
Generation Gateway

Delivers an assembled message list to the language-generation provider through
a priority-ordered fallback chain of models.

Per model:
- rate limited   → back off and retry the same model (``rate_limit_retries`` times)
- server error   → move on to the next model immediately
- anything else  → move on to the next model (network, auth, empty, unparseable)

The first model to return a usable payload wins and is reported with the result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from science_buddy.config import EngineConfig
from science_buddy.exceptions import ProviderError, ProviderErrorKind, StructuredOutputError
from science_buddy.provider_credentials import ProviderCredentials
from science_buddy.response_sanitizer import ResponseSanitizer

logger = logging.getLogger(__name__)

EMPTY_PAYLOAD = "empty_payload"
UNPARSEABLE_PAYLOAD = "unparseable_payload"


# ── Provider boundary ──────────────────────────────────────────────────────


class GenerationProvider:
    """One operation: generate text for a message list with a given model."""

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        structured: bool = False
    ) -> Optional[str]:
        """
        Raises:
            ProviderError: With the failure class of the call
        """
        raise NotImplementedError


class OpenAICompatibleProvider(GenerationProvider):
    """
    Provider adapter for OpenAI-compatible chat completion endpoints (Groq by default).

    SDK retries are disabled; the gateway owns retry policy.
    """

    def __init__(self, config: EngineConfig, credentials: ProviderCredentials):
        self.config = config
        self.credentials = credentials
        self._client: Optional[AsyncOpenAI] = None
        self._client_key: Optional[str] = None

    async def _get_client(self) -> AsyncOpenAI:
        key = await self.credentials.get()
        if not key:
            raise ProviderError(ProviderErrorKind.AUTH, "No provider API key available")
        if self._client is None or self._client_key != key:
            self._client = AsyncOpenAI(
                api_key=key,
                base_url=self.config.provider_base_url,
                max_retries=0,
            )
            self._client_key = key
        return self._client

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        structured: bool = False
    ) -> Optional[str]:
        client = await self._get_client()
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.config.max_tokens,
        }
        if structured:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            raise ProviderError(ProviderErrorKind.RATE_LIMITED, str(e), e.status_code) from e
        except openai.AuthenticationError as e:
            self.credentials.invalidate()
            raise ProviderError(ProviderErrorKind.AUTH, str(e), e.status_code) from e
        except openai.APIStatusError as e:
            kind = ProviderErrorKind.SERVER_ERROR if e.status_code >= 500 else ProviderErrorKind.OTHER
            raise ProviderError(kind, str(e), e.status_code) from e
        except openai.APIConnectionError as e:
            raise ProviderError(ProviderErrorKind.NETWORK, str(e)) from e

        try:
            return response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(ProviderErrorKind.OTHER, f"Malformed provider response: {e}") from e


# ── Request / result types ─────────────────────────────────────────────────


@dataclass
class GenerationRequest:
    """What the gateway sends: messages plus the output mode."""
    messages: List[Dict[str, str]]
    structured: bool = False
    temperature: Optional[float] = None
    # Pydantic model a structured payload must satisfy
    schema: Optional[Type[BaseModel]] = None
    purpose: str = "chat"


@dataclass
class AttemptRecord:
    """One provider call in the fallback chain."""
    model: str
    outcome: str
    detail: str = ""


@dataclass
class GenerationResult:
    """
    Gateway outcome.

    On success ``text`` holds the raw payload, ``data`` the parsed structure
    (structured requests only) and ``model`` the serving model. On terminal
    failure ``ok`` is False and ``attempts`` names the exhausted chain.
    """
    ok: bool
    text: Optional[str] = None
    data: Any = None
    model: Optional[str] = None
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def failure_reason(self) -> Optional[str]:
        if self.ok:
            return None
        chain = ", ".join(f"{a.model}: {a.outcome}" for a in self.attempts) or "no models configured"
        return f"All models exhausted ({chain})"


# ── Gateway ────────────────────────────────────────────────────────────────


class GenerationGateway:
    """Runs a GenerationRequest through the model fallback chain."""

    def __init__(
        self,
        provider: GenerationProvider,
        config: EngineConfig,
        sanitizer: Optional[ResponseSanitizer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.provider = provider
        self.config = config
        self.sanitizer = sanitizer or ResponseSanitizer()
        self._sleep = sleep

    def _temperature_for(self, request: GenerationRequest) -> float:
        if request.temperature is not None:
            return request.temperature
        if request.structured:
            return self.config.structured_temperature
        return self.config.conversational_temperature

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Send the request down the model chain.

        Never raises for provider failures; returns a failed GenerationResult
        when every model is exhausted.
        """
        temperature = self._temperature_for(request)
        attempts: List[AttemptRecord] = []

        for model in self.config.model_chain:
            retries_left = self.config.rate_limit_retries

            while True:
                try:
                    text = await self.provider.complete(
                        model, request.messages, temperature, structured=request.structured
                    )
                except ProviderError as e:
                    attempts.append(AttemptRecord(model=model, outcome=e.kind.value, detail=str(e)))
                    if e.kind == ProviderErrorKind.RATE_LIMITED and retries_left > 0:
                        retries_left -= 1
                        logger.warning(
                            f"⏳ [GenerationGateway] {model} rate limited, retrying in "
                            f"{self.config.rate_limit_backoff_seconds}s"
                        )
                        await self._sleep(self.config.rate_limit_backoff_seconds)
                        continue
                    logger.warning(f"⚠️ [GenerationGateway] {model} failed ({e.kind.value}), advancing chain")
                    break
                except Exception as e:
                    attempts.append(AttemptRecord(model=model, outcome=ProviderErrorKind.OTHER.value, detail=str(e)))
                    logger.warning(f"⚠️ [GenerationGateway] {model} raised {type(e).__name__}: {e}, advancing chain")
                    break

                if not text or not text.strip():
                    attempts.append(AttemptRecord(model=model, outcome=EMPTY_PAYLOAD))
                    logger.warning(f"⚠️ [GenerationGateway] {model} returned an empty payload, advancing chain")
                    break

                if not request.structured:
                    attempts.append(AttemptRecord(model=model, outcome="ok"))
                    logger.info(f"🤖 [GenerationGateway] {request.purpose} served by {model}")
                    return GenerationResult(ok=True, text=text.strip(), model=model, attempts=attempts)

                try:
                    data = self.sanitizer.parse(text, request.schema)
                except StructuredOutputError as e:
                    attempts.append(AttemptRecord(model=model, outcome=UNPARSEABLE_PAYLOAD, detail=str(e)))
                    logger.warning(f"⚠️ [GenerationGateway] {model} structured output rejected: {e}")
                    break

                attempts.append(AttemptRecord(model=model, outcome="ok"))
                logger.info(f"🤖 [GenerationGateway] {request.purpose} (structured) served by {model}")
                return GenerationResult(ok=True, text=text, data=data, model=model, attempts=attempts)

        result = GenerationResult(ok=False, attempts=attempts)
        logger.error(f"❌ [GenerationGateway] {request.purpose}: {result.failure_reason}")
        return result
