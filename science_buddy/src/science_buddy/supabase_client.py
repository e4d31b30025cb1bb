"""
Supabase client for engine persistence
"""
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import AsyncClient, acreate_client

load_dotenv()

_supabase_client: Optional[AsyncClient] = None


async def get_supabase_client() -> AsyncClient:
    """Get or create the async Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        # Service role key: the engine reads other users' scores for ranking
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = await acreate_client(url, key)

    return _supabase_client


def reset_supabase_client() -> None:
    """Drop the cached client so the next call reconnects."""
    global _supabase_client
    _supabase_client = None
