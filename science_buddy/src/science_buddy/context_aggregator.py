"""
Context Aggregator

Reduces a user's recent activity (leaderboard rank, quiz results, research
projects, saved concept maps, community contributions) to a compact
ContextSnapshot for the tutor prompt.

All sub-fetches run concurrently under one time budget. A sub-fetch that fails
or does not finish in time omits its section; aggregation itself never raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from science_buddy.config import EngineConfig
from science_buddy.session_state import StudentProfile
from science_buddy.store_backend import ChatStoreBackend

logger = logging.getLogger(__name__)


@dataclass
class ContextSnapshot:
    """Per-turn view of a student's activity. Every list holds at most five items."""
    # 1-based leaderboard position, None when unknown
    rank: Optional[int] = None
    total_score: Optional[int] = None
    quiz_results: List[Tuple[str, Any]] = field(default_factory=list)
    research_topics: List[str] = field(default_factory=list)
    saved_topics: List[str] = field(default_factory=list)
    contribution_count: Optional[int] = None
    student_name: Optional[str] = None
    directive: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.rank is None
            and self.total_score is None
            and not self.quiz_results
            and not self.research_topics
            and not self.saved_topics
            and self.contribution_count is None
        )


class ContextAggregator:
    """Builds ContextSnapshots from the store, with a short per-user cache."""

    def __init__(self, backend: ChatStoreBackend, config: EngineConfig):
        self.backend = backend
        self.config = config
        self._cache: Dict[str, Tuple[float, ContextSnapshot]] = {}

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop the cached snapshot for one user, or for everyone."""
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    def _cached(self, user_id: str) -> Optional[ContextSnapshot]:
        ttl = self.config.context_cache_ttl_seconds
        if ttl <= 0:
            return None
        entry = self._cache.get(user_id)
        if entry is None:
            return None
        stored_at, snapshot = entry
        if time.monotonic() - stored_at > ttl:
            self._cache.pop(user_id, None)
            return None
        return snapshot

    async def _fetch_standing(self, user_id: str) -> Tuple[Optional[int], Optional[int]]:
        rankings = await self.backend.fetch_user_rankings()
        for index, user in enumerate(rankings):
            if isinstance(user, dict) and str(user.get("id")) == str(user_id):
                return index + 1, user.get("total_points") or 0
        return None, None

    async def aggregate(
        self,
        user_id: str,
        profile: Optional[StudentProfile] = None
    ) -> ContextSnapshot:
        """
        Collect the student's context.

        Args:
            user_id: Student whose activity is read
            profile: Optional personalization data rendered as a directive

        Returns:
            ContextSnapshot with every section that could be fetched in time
        """
        cached = self._cached(user_id)
        if cached is not None:
            logger.debug(f"📊 [ContextAggregator] Cache hit for user {user_id[:20]}")
            snapshot = cached
        else:
            snapshot = await self._collect(user_id)
            if self.config.context_cache_ttl_seconds > 0:
                self._cache[user_id] = (time.monotonic(), snapshot)

        # Profile changes apply immediately, so they are layered on after the cache
        if profile is not None:
            snapshot = ContextSnapshot(
                rank=snapshot.rank,
                total_score=snapshot.total_score,
                quiz_results=list(snapshot.quiz_results),
                research_topics=list(snapshot.research_topics),
                saved_topics=list(snapshot.saved_topics),
                contribution_count=snapshot.contribution_count,
                student_name=profile.name,
                directive=profile.directive(),
            )
        return snapshot

    async def _collect(self, user_id: str) -> ContextSnapshot:
        limit = self.config.context_list_limit
        start_time = time.time()

        tasks = {
            "standing": asyncio.create_task(self._fetch_standing(user_id)),
            "quiz_results": asyncio.create_task(self.backend.fetch_recent_quiz_results(user_id, limit)),
            "research_topics": asyncio.create_task(self.backend.fetch_research_titles(user_id, limit)),
            "saved_topics": asyncio.create_task(self.backend.fetch_saved_topics(user_id, limit)),
            "contribution_count": asyncio.create_task(self.backend.count_contributions(user_id)),
        }

        done, pending = await asyncio.wait(
            tasks.values(),
            timeout=self.config.context_timeout_seconds
        )
        for task in pending:
            task.cancel()

        results: Dict[str, Any] = {}
        for name, task in tasks.items():
            if task in pending:
                logger.warning(f"⏱️ [ContextAggregator] {name} timed out, omitting")
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"⚠️ [ContextAggregator] {name} failed, omitting: {error}")
                continue
            results[name] = task.result()

        snapshot = ContextSnapshot()
        builders = {
            "standing": self._apply_standing,
            "quiz_results": self._apply_quiz_results,
            "research_topics": self._apply_research_topics,
            "saved_topics": self._apply_saved_topics,
            "contribution_count": self._apply_contribution_count,
        }
        built = 0
        for name, value in results.items():
            try:
                builders[name](snapshot, value, limit)
                built += 1
            except Exception as e:
                logger.warning(f"⚠️ [ContextAggregator] {name} unreadable, omitting: {e}")

        elapsed = time.time() - start_time
        logger.info(
            f"📊 [ContextAggregator] Context for {user_id[:20]} in {elapsed:.2f}s "
            f"({built}/{len(tasks)} sections)"
        )
        return snapshot

    @staticmethod
    def _apply_standing(snapshot: ContextSnapshot, value: Any, limit: int) -> None:
        rank, total_score = value
        snapshot.rank, snapshot.total_score = rank, total_score

    @staticmethod
    def _apply_quiz_results(snapshot: ContextSnapshot, value: Any, limit: int) -> None:
        rows = [row for row in (value or []) if isinstance(row, dict) and row.get("topic")]
        snapshot.quiz_results = [(row["topic"], row.get("score")) for row in rows[:limit]]

    @staticmethod
    def _apply_research_topics(snapshot: ContextSnapshot, value: Any, limit: int) -> None:
        snapshot.research_topics = [t for t in (value or []) if isinstance(t, str) and t][:limit]

    @staticmethod
    def _apply_saved_topics(snapshot: ContextSnapshot, value: Any, limit: int) -> None:
        snapshot.saved_topics = [t for t in (value or []) if isinstance(t, str) and t][:limit]

    @staticmethod
    def _apply_contribution_count(snapshot: ContextSnapshot, value: Any, limit: int) -> None:
        snapshot.contribution_count = None if value is None else int(value)
