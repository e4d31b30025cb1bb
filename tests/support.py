"""
Test doubles for the generation provider and the persistent store.
"""

import asyncio
from typing import Dict, List, Optional, Union

from science_buddy.context_aggregator import ContextAggregator
from science_buddy.exceptions import ProviderError, ProviderErrorKind
from science_buddy.generation_gateway import GenerationGateway, GenerationProvider
from science_buddy.prompt_assembler import PromptAssembler
from science_buddy.session_orchestrator import SessionOrchestrator
from science_buddy.session_state import SessionModality
from science_buddy.session_store import SessionStore
from science_buddy.store_backend import InMemoryStoreBackend

Outcome = Union[str, None, Exception]


def rate_limited() -> ProviderError:
    return ProviderError(ProviderErrorKind.RATE_LIMITED, "429 Too Many Requests", 429)


def server_error() -> ProviderError:
    return ProviderError(ProviderErrorKind.SERVER_ERROR, "503 Service Unavailable", 503)


def auth_error() -> ProviderError:
    return ProviderError(ProviderErrorKind.AUTH, "401 Invalid API Key", 401)


class ScriptedProvider(GenerationProvider):
    """
    Provider that plays back scripted outcomes per model.

    Each model has a queue of outcomes (text, None for an empty payload, or an
    exception to raise). Once a queue is empty the model answers ``default``.
    Title requests are answered with ``title`` and recorded separately.
    """

    def __init__(
        self,
        script: Optional[Dict[str, List[Outcome]]] = None,
        default: Outcome = "Great question! Let's explore it together. 🌟",
        title: Outcome = "Understanding Friction"
    ):
        self.script = {model: list(outcomes) for model, outcomes in (script or {}).items()}
        self.default = default
        self.title = title
        self.calls: List[dict] = []
        self.title_calls: List[dict] = []

    @staticmethod
    def is_title_request(messages) -> bool:
        return len(messages) == 1 and messages[0]["content"].startswith("Summarize this message")

    def models_called(self) -> List[str]:
        return [call["model"] for call in self.calls]

    async def complete(self, model, messages, temperature, structured=False):
        call = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "structured": structured,
        }
        if self.is_title_request(messages):
            self.title_calls.append(call)
            outcome = self.title
        else:
            self.calls.append(call)
            queue = self.script.get(model)
            outcome = queue.pop(0) if queue else self.default

        await asyncio.sleep(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FlakyStoreBackend(InMemoryStoreBackend):
    """In-memory store whose writes and projections can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.fail_deletes = False
        self.failing_projections = set()
        self.slow_projections = set()
        # projection name -> raw value returned in place of the real rows
        self.malformed_projections = {}
        self.upsert_count = 0

    async def upsert_session(self, record):
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.upsert_count += 1
        await super().upsert_session(record)

    async def delete_session(self, session_id, modality):
        if self.fail_deletes:
            raise ConnectionError("store unavailable")
        await super().delete_session(session_id, modality)

    async def _projection(self, name: str, fetch, *args):
        if name in self.failing_projections:
            raise RuntimeError(f"{name} query failed")
        if name in self.slow_projections:
            await asyncio.sleep(10)
        if name in self.malformed_projections:
            return self.malformed_projections[name]
        return await fetch(*args)

    async def fetch_user_rankings(self):
        return await self._projection("rankings", super().fetch_user_rankings)

    async def fetch_recent_quiz_results(self, user_id, limit):
        return await self._projection("quiz_results", super().fetch_recent_quiz_results, user_id, limit)

    async def fetch_research_titles(self, user_id, limit):
        return await self._projection("research_topics", super().fetch_research_titles, user_id, limit)

    async def fetch_saved_topics(self, user_id, limit):
        return await self._projection("saved_topics", super().fetch_saved_topics, user_id, limit)

    async def count_contributions(self, user_id):
        return await self._projection("contribution_count", super().count_contributions, user_id)

    def durable_message_count(self, session_id: str) -> int:
        return len(self.sessions[session_id]["messages"])


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


def build_orchestrator(config, backend, provider, sleep, modality=None, user_id="asha", profile=None):
    """Wire an orchestrator over the in-memory store and a scripted provider."""
    return SessionOrchestrator(
        user_id=user_id,
        modality=modality or SessionModality.TEXT,
        store=SessionStore(backend),
        aggregator=ContextAggregator(backend, config),
        assembler=PromptAssembler(config),
        gateway=GenerationGateway(provider, config, sleep=sleep),
        config=config,
        profile=profile,
    )
