"""
Unit Tests for Context Aggregator

Tests rank lookup, list caps, partial failure and the time budget.
"""

import pytest

from science_buddy.context_aggregator import ContextAggregator, ContextSnapshot
from science_buddy.session_state import StudentProfile


def _seed(backend, user_id="asha"):
    backend.users = [
        {"id": "rohan", "total_points": 900},
        {"id": user_id, "total_points": 750},
        {"id": "meera", "total_points": 300},
    ]
    backend.quiz_results = [
        {"user_id": user_id, "topic": f"Topic {i}", "score": i, "created_at": f"2026-03-{i + 10:02d}"}
        for i in range(8)
    ]
    backend.saved_topics = [
        {"user_id": user_id, "topic": "Cell Structure", "created_at": "2026-03-01"},
        {"user_id": user_id, "topic": "Combustion", "created_at": "2026-03-02"},
    ]
    backend.contributions = {user_id: 4}


class TestContextAggregator:

    @pytest.mark.asyncio
    async def test_empty_user_gives_unknown_rank(self, backend, config):
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("new-student")

        assert isinstance(snapshot, ContextSnapshot)
        assert snapshot.rank is None
        assert snapshot.total_score is None
        assert snapshot.quiz_results == []
        assert snapshot.research_topics == []
        assert snapshot.saved_topics == []
        assert snapshot.contribution_count == 0

    @pytest.mark.asyncio
    async def test_rank_is_position_in_descending_order(self, backend, config):
        _seed(backend)
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.rank == 2
        assert snapshot.total_score == 750
        assert snapshot.contribution_count == 4
        assert snapshot.saved_topics == ["Combustion", "Cell Structure"]

    @pytest.mark.asyncio
    async def test_lists_are_capped_at_five(self, backend, config):
        _seed(backend)
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert len(snapshot.quiz_results) == 5
        # Most recent first
        assert snapshot.quiz_results[0] == ("Topic 7", 7)

    @pytest.mark.asyncio
    async def test_failed_sub_fetch_omits_only_its_section(self, backend, config):
        _seed(backend)
        backend.failing_projections = {"rankings", "quiz_results"}
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.rank is None
        assert snapshot.quiz_results == []
        assert snapshot.saved_topics == ["Combustion", "Cell Structure"]
        assert snapshot.contribution_count == 4

    @pytest.mark.asyncio
    async def test_every_sub_fetch_failing_still_returns_snapshot(self, backend, config):
        backend.failing_projections = {
            "rankings", "quiz_results", "research_topics", "saved_topics", "contribution_count"
        }
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.is_empty

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, backend, config):
        _seed(backend)
        backend.malformed_projections = {
            "quiz_results": [None, "Cells", {"topic": "Friction", "score": 90}],
            "rankings": [None, {"id": "asha", "total_points": 750}],
            "research_topics": [None, "Plant notes", 7],
        }
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.quiz_results == [("Friction", 90)]
        assert snapshot.rank == 2
        assert snapshot.research_topics == ["Plant notes"]
        assert snapshot.contribution_count == 4

    @pytest.mark.asyncio
    async def test_unreadable_section_is_omitted_without_raising(self, backend, config):
        _seed(backend)
        backend.malformed_projections = {
            "quiz_results": 42,
            "rankings": ["not-a-row"],
            "contribution_count": "many",
        }
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.quiz_results == []
        assert snapshot.rank is None
        assert snapshot.contribution_count is None
        assert snapshot.saved_topics == ["Combustion", "Cell Structure"]

    @pytest.mark.asyncio
    async def test_slow_sub_fetch_is_cut_by_time_budget(self, backend, config):
        _seed(backend)
        backend.slow_projections = {"rankings"}
        config.context_timeout_seconds = 0.05
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha")

        assert snapshot.rank is None
        assert snapshot.contribution_count == 4

    @pytest.mark.asyncio
    async def test_profile_becomes_directive(self, backend, config):
        aggregator = ContextAggregator(backend, config)

        snapshot = await aggregator.aggregate("asha", StudentProfile(name="Asha", interests="Loves football"))

        assert snapshot.student_name == "Asha"
        assert "Asha" in snapshot.directive
        assert "Loves football" in snapshot.directive


class TestSnapshotCache:

    @pytest.mark.asyncio
    async def test_cached_within_ttl_until_invalidated(self, backend, config):
        config.context_cache_ttl_seconds = 60
        backend.contributions = {"asha": 1}
        aggregator = ContextAggregator(backend, config)

        first = await aggregator.aggregate("asha")
        backend.contributions = {"asha": 2}
        cached = await aggregator.aggregate("asha")
        aggregator.invalidate("asha")
        fresh = await aggregator.aggregate("asha")

        assert first.contribution_count == 1
        assert cached.contribution_count == 1
        assert fresh.contribution_count == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, backend, config):
        backend.contributions = {"asha": 1}
        aggregator = ContextAggregator(backend, config)

        await aggregator.aggregate("asha")
        backend.contributions = {"asha": 3}

        assert (await aggregator.aggregate("asha")).contribution_count == 3
