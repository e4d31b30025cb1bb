"""
Run one conversation turn end-to-end against the configured services.

Uses Supabase when SUPABASE_URL / SUPABASE_SERVICE_KEY are set (in-memory store
otherwise) and the OpenAI-compatible provider from GROQ_API_KEY or the
app_secrets table.

    python scripts/demo_turn.py --user demo-student "what is friction"
"""

import asyncio
import logging
import os
import sys

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "science_buddy", "src"))

from science_buddy.config import EngineConfig
from science_buddy.context_aggregator import ContextAggregator
from science_buddy.generation_gateway import GenerationGateway, OpenAICompatibleProvider
from science_buddy.logger import get_logger, setup_logging
from science_buddy.prompt_assembler import PromptAssembler
from science_buddy.provider_credentials import ProviderCredentials
from science_buddy.session_orchestrator import SessionOrchestrator
from science_buddy.session_state import SessionModality, StudentProfile
from science_buddy.session_store import SessionStore
from science_buddy.store_backend import create_store_backend
from science_buddy.supabase_client import get_supabase_client

logger = get_logger("demo_turn")


async def main(user_id: str, message: str, modality: SessionModality, session_id=None, name=None, interests=None) -> int:
    config = EngineConfig.from_env()
    config.validate()

    try:
        supabase = await get_supabase_client()
    except ValueError as e:
        logger.warning(f"⚠️ Supabase not configured ({e})")
        supabase = None

    backend = create_store_backend(supabase)
    credentials = ProviderCredentials(config, supabase_client=supabase)
    gateway = GenerationGateway(OpenAICompatibleProvider(config, credentials), config)
    profile = StudentProfile(name=name, interests=interests) if (name or interests) else None

    orchestrator = SessionOrchestrator(
        user_id=user_id,
        modality=modality,
        store=SessionStore(backend),
        aggregator=ContextAggregator(backend, config),
        assembler=PromptAssembler(config),
        gateway=gateway,
        config=config,
        profile=profile,
    )
    await orchestrator.load(initial_session_id=session_id)

    result = await orchestrator.send(message)
    await orchestrator.wait_for_background_tasks()

    logger.success("Turn complete", {
        "session": result.session.id,
        "title": result.session.title,
        "model": result.model or "none (all models failed)",
        "persisted": result.persisted,
    })
    if result.notice:
        logger.warning(result.notice)
    print(f"\nScience Buddy: {result.assistant_message.text}\n")
    return 1 if result.failed else 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Send one message through the Science Buddy engine")
    parser.add_argument("message", help="Student message")
    parser.add_argument("--user", default="demo-student", help="User identifier")
    parser.add_argument("--session", default=None, help="Existing session identifier to continue")
    parser.add_argument(
        "--modality",
        choices=[m.value for m in SessionModality if m != SessionModality.DOCUMENT],
        default=SessionModality.TEXT.value,
    )
    parser.add_argument("--name", default=None, help="Student name for personalization")
    parser.add_argument("--interests", default=None, help="Student interests for personalization")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    raise SystemExit(asyncio.run(main(
        args.user,
        args.message,
        SessionModality(args.modality),
        session_id=args.session,
        name=args.name,
        interests=args.interests,
    )))
