"""
Unit tests for statistics aggregation.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from planhub.cache.keys import CacheTTLs
from planhub.database.store import Filter
from planhub.services.statistics import StatisticsAggregator, compute_statistics


NOW = datetime(2026, 3, 10, 12, 0, 0)


def activity(status="pending", due=None, priority="medium", kind="task", actual=None):
    doc = {"status": status, "priority": priority, "type": kind, "due_date": due}
    if actual is not None:
        doc["metadata"] = {"actual_duration": actual}
    return doc


class TestComputeStatistics:
    """Test the pure aggregation."""

    def test_empty_scope(self):
        stats = compute_statistics([], NOW)

        assert stats.total_activities == 0
        assert stats.completion_rate == 0.0
        assert stats.average_completion_time is None
        assert stats.total_time_spent is None

    def test_completed_with_overdue(self):
        docs = [
            activity("completed"),
            activity("pending", due=NOW - timedelta(days=1)),
        ]

        stats = compute_statistics(docs, NOW)

        assert stats.total_activities == 2
        assert stats.completed_activities == 1
        assert stats.pending_activities == 1
        assert stats.completion_rate == 50.0
        assert stats.overdue_count == 1
        assert stats.upcoming_count == 0

    def test_upcoming_window(self):
        docs = [
            activity("pending", due=NOW + timedelta(days=2)),
            activity("in-progress", due=NOW + timedelta(days=6)),
            activity("pending", due=NOW + timedelta(days=30)),
        ]

        assert compute_statistics(docs, NOW).upcoming_count == 2
        assert compute_statistics(docs, NOW, upcoming_days=1).upcoming_count == 0

    def test_closed_activities_never_overdue(self):
        past = NOW - timedelta(days=3)
        docs = [
            activity("completed", due=past),
            activity("cancelled", due=past),
            activity("archived", due=past),
        ]

        stats = compute_statistics(docs, NOW)

        assert stats.overdue_count == 0
        assert stats.pending_activities == 0

    def test_breakdowns_include_every_value(self):
        stats = compute_statistics([activity(priority="urgent", kind="event")], NOW)

        assert stats.activities_by_status["pending"] == 1
        assert stats.activities_by_status["completed"] == 0
        assert stats.activities_by_priority["urgent"] == 1
        assert stats.activities_by_priority["low"] == 0
        assert stats.activities_by_type["event"] == 1
        assert set(stats.activities_by_type) >= {"task", "note", "goal", "habit", "milestone"}

    def test_completion_time_from_actual_duration(self):
        docs = [
            activity("completed", actual=30),
            activity("completed", actual=90),
            activity("completed"),
            activity("pending", actual=500),
        ]

        stats = compute_statistics(docs, NOW)

        assert stats.average_completion_time == 60
        assert stats.total_time_spent == 120

    def test_rate_is_rounded(self):
        docs = [activity("completed"), activity(), activity()]
        assert compute_statistics(docs, NOW).completion_rate == 33.33


@pytest.fixture
def aggregator():
    activities = MagicMock()
    activities.scan = AsyncMock(return_value=[activity("completed"), activity()])
    sections = MagicMock()
    sections.count_in_planner = AsyncMock(return_value=3)
    cache = MagicMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock(return_value=True)
    agg = StatisticsAggregator(activities, sections, cache, CacheTTLs(), scan_limit=100, timezone="UTC")
    return agg, activities, cache


class TestStatisticsAggregator:
    """Test caching around scope statistics."""

    @pytest.mark.asyncio
    async def test_section_statistics_computed_and_cached(self, aggregator):
        agg, activities, cache = aggregator

        stats = await agg.section_statistics("s1")

        assert stats.total_activities == 2
        scanned = activities.scan.await_args.args[0]
        assert scanned == [Filter("section_id", "==", "s1")]
        cache.set.assert_awaited_once()
        assert cache.set.await_args.args[0] == "section-stats:s1"

    @pytest.mark.asyncio
    async def test_cached_statistics_skip_the_store(self, aggregator):
        agg, activities, cache = aggregator
        cache.get.return_value = {"total_activities": 7, "completion_rate": 10.0}

        stats = await agg.section_statistics("s1")

        assert stats.total_activities == 7
        activities.scan.assert_not_called()

    @pytest.mark.asyncio
    async def test_filtered_statistics_bypass_cache(self, aggregator):
        agg, activities, cache = aggregator
        status = Filter("status", "==", "completed")

        await agg.section_statistics("s1", [status])

        cache.get.assert_not_called()
        cache.set.assert_not_called()
        assert status in activities.scan.await_args.args[0]

    @pytest.mark.asyncio
    async def test_planner_statistics_include_section_count(self, aggregator):
        agg, _, cache = aggregator

        stats = await agg.planner_statistics("p1")

        assert stats.total_sections == 3
        assert stats.completion_rate == 50.0
        assert cache.set.await_args.args[0] == "planner-stats:p1"
