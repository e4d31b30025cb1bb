"""
Provider Credentials

Lazily resolves the generation provider's API key once per process and keeps it
until it is explicitly invalidated (after the provider rejects it).

Resolution order:
1. ``EngineConfig.provider_api_key`` (``GROQ_API_KEY`` in the environment)
2. the ``app_secrets`` table in Supabase, row ``provider_secret_name``
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from science_buddy.config import EngineConfig

logger = logging.getLogger(__name__)


class ProviderCredentials:
    """Process-scoped, lazily fetched provider key with explicit invalidation."""

    def __init__(
        self,
        config: EngineConfig,
        supabase_client=None,
        secret_loader: Optional[Callable[[], Awaitable[Optional[str]]]] = None
    ):
        """
        Args:
            config: Engine configuration
            supabase_client: Async Supabase client for the ``app_secrets`` lookup
            secret_loader: Replaces the ``app_secrets`` lookup (used in tests)
        """
        self.config = config
        self.supabase = supabase_client
        self._secret_loader = secret_loader
        self._cached_key: Optional[str] = None
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    async def _load_from_store(self) -> Optional[str]:
        if self._secret_loader is not None:
            return await self._secret_loader()
        if self.supabase is None:
            return None
        try:
            result = await self.supabase.table('app_secrets') \
                .select('value') \
                .eq('name', self.config.provider_secret_name) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.warning(f"⚠️ [ProviderCredentials] Could not read provider key from store: {e}")
            return None
        if result.data:
            return result.data[0].get("value")
        return None

    async def get(self) -> Optional[str]:
        """Return the cached key, resolving it on first use."""
        if self._cached_key:
            return self._cached_key

        async with self._lock:
            if self._cached_key:
                return self._cached_key
            self.fetch_count += 1
            key = self.config.provider_api_key or await self._load_from_store()
            if not key:
                logger.error("❌ [ProviderCredentials] No provider API key found")
                return None
            self._cached_key = key
            logger.info("🔑 [ProviderCredentials] Provider key resolved")
            return key

    def invalidate(self) -> None:
        """Forget the cached key; the next ``get`` resolves it again."""
        if self._cached_key:
            logger.warning("⚠️ [ProviderCredentials] Provider key invalidated")
        self._cached_key = None
