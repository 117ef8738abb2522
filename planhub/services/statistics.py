"""
Statistics aggregation.

Rollups are recomputed from the current activity set of a scope, never
counted incrementally. Unfiltered scope statistics are cached briefly and
dropped by the invalidation cascade whenever an activity in the scope
changes; filtered requests are always computed fresh.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence

from ..cache.keys import CacheTTLs, planner_stats_key, section_stats_key
from ..cache.redis_client import CacheClient
from ..database.repositories.activities import ActivityRepository
from ..database.repositories.planners import PlannerRepository
from ..database.repositories.sections import SectionRepository
from ..database.store import Filter
from ..exceptions import NotFoundError, StoreError
from ..models.entities import (
    OPEN_STATUSES,
    ActivityPriority,
    ActivityStatus,
    ActivityType,
    PlannerStatistics,
    ScopeStatistics,
)
from ..utils.datetime_utils import get_local_now, is_due_within, is_overdue

logger = logging.getLogger(__name__)


def compute_statistics(
    activities: Iterable[Dict[str, Any]],
    now: datetime,
    upcoming_days: int = 7,
) -> ScopeStatistics:
    """
    Aggregate raw activity documents.

    Overdue and upcoming only count pending and in-progress activities.
    Completion time and time spent use metadata.actual_duration (minutes)
    of completed activities.
    """
    by_status = {s.value: 0 for s in ActivityStatus}
    by_priority = {p.value: 0 for p in ActivityPriority}
    by_type = {t.value: 0 for t in ActivityType}

    total = 0
    overdue = 0
    upcoming = 0
    durations: List[int] = []

    for doc in activities:
        total += 1
        status = doc.get("status") or ActivityStatus.PENDING.value
        by_status[status] = by_status.get(status, 0) + 1
        priority = doc.get("priority") or ActivityPriority.MEDIUM.value
        by_priority[priority] = by_priority.get(priority, 0) + 1
        kind = doc.get("type") or ActivityType.TASK.value
        by_type[kind] = by_type.get(kind, 0) + 1

        due = doc.get("due_date")
        if due is not None and status in OPEN_STATUSES:
            if is_overdue(due, now):
                overdue += 1
            elif is_due_within(due, upcoming_days, now):
                upcoming += 1

        if status == ActivityStatus.COMPLETED.value:
            actual = (doc.get("metadata") or {}).get("actual_duration")
            if actual is not None:
                durations.append(actual)

    completed = by_status[ActivityStatus.COMPLETED.value]
    time_spent = sum(durations)

    return ScopeStatistics(
        total_activities=total,
        completed_activities=completed,
        pending_activities=by_status[ActivityStatus.PENDING.value] + by_status[ActivityStatus.IN_PROGRESS.value],
        activities_by_status=by_status,
        activities_by_priority=by_priority,
        activities_by_type=by_type,
        completion_rate=round(completed / total * 100, 2) if total else 0.0,
        overdue_count=overdue,
        upcoming_count=upcoming,
        average_completion_time=(time_spent / len(durations)) if durations else None,
        total_time_spent=time_spent or None,
    )


class StatisticsAggregator:
    """Scope statistics with a short-lived cache for the unfiltered view."""

    def __init__(
        self,
        activities: ActivityRepository,
        sections: SectionRepository,
        cache: CacheClient,
        ttls: CacheTTLs,
        scan_limit: int = 10000,
        upcoming_days: int = 7,
        timezone: str = "UTC",
    ):
        self.activities = activities
        self.sections = sections
        self.cache = cache
        self.ttls = ttls
        self.scan_limit = scan_limit
        self.upcoming_days = upcoming_days
        self.timezone = timezone

    async def _scan(self, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        docs = await self.activities.scan(filters, limit=self.scan_limit)
        if len(docs) >= self.scan_limit:
            logger.warning(f"Statistics scan hit the cap of {self.scan_limit} activities")
        return docs

    async def section_statistics(
        self, section_id: str, filters: Sequence[Filter] = ()
    ) -> ScopeStatistics:
        key = section_stats_key(section_id)
        if not filters:
            cached = await self.cache.get(key)
            if cached is not None:
                return ScopeStatistics.model_validate(cached)

        docs = await self._scan([Filter("section_id", "==", section_id), *filters])
        stats = compute_statistics(docs, get_local_now(self.timezone), self.upcoming_days)

        if not filters:
            await self.cache.set(key, stats.model_dump(mode="json"), ttl=self.ttls.section_stats)
        return stats

    async def planner_statistics(
        self, planner_id: str, filters: Sequence[Filter] = ()
    ) -> PlannerStatistics:
        key = planner_stats_key(planner_id)
        if not filters:
            cached = await self.cache.get(key)
            if cached is not None:
                return PlannerStatistics.model_validate(cached)

        docs = await self._scan([Filter("planner_id", "==", planner_id), *filters])
        base = compute_statistics(docs, get_local_now(self.timezone), self.upcoming_days)
        stats = PlannerStatistics(
            **base.model_dump(),
            total_sections=await self.sections.count_in_planner(planner_id),
        )

        if not filters:
            await self.cache.set(key, stats.model_dump(mode="json"), ttl=self.ttls.planner_stats)
        return stats


class RollupUpdater:
    """
    Recomputes the metadata rollups stored on sections and planners from
    store counts after activity mutations.
    """

    def __init__(
        self,
        activities: ActivityRepository,
        sections: SectionRepository,
        planners: PlannerRepository,
        timezone: str = "UTC",
    ):
        self.activities = activities
        self.sections = sections
        self.planners = planners
        self.timezone = timezone

    async def refresh_section(self, section_id: str):
        total = await self.activities.count_in_section(section_id)
        completed = await self.activities.count_in_section(section_id, ActivityStatus.COMPLETED.value)
        await self.sections.update(section_id, {
            "metadata": {
                "total_activities": total,
                "completed_activities": completed,
                "last_activity_at": get_local_now(self.timezone),
            }
        })

    async def refresh_planner(self, planner_id: str):
        planner = await self.planners.get_fresh(planner_id)
        if planner is None:
            return
        metadata = planner.metadata.model_copy(update={
            "total_activities": await self.activities.count_in_planner(planner_id),
            "completed_activities": await self.activities.count_in_planner(
                planner_id, ActivityStatus.COMPLETED.value
            ),
            "last_activity_at": get_local_now(self.timezone),
        })
        await self.planners.update(planner_id, {"metadata": metadata.model_dump()})

    async def refresh(self, section_ids: Iterable[str] = (), planner_ids: Iterable[str] = ()):
        """
        Refresh every distinct scope once. A scope deleted in the meantime
        is skipped; a store failure leaves the rollup for the next mutation.
        """
        for section_id in dict.fromkeys(section_ids):
            try:
                await self.refresh_section(section_id)
            except NotFoundError:
                logger.debug(f"Section {section_id} gone before rollup refresh")
            except StoreError as e:
                logger.error(f"Rollup refresh failed for section {section_id}: {e}")

        for planner_id in dict.fromkeys(planner_ids):
            try:
                await self.refresh_planner(planner_id)
            except NotFoundError:
                logger.debug(f"Planner {planner_id} gone before rollup refresh")
            except StoreError as e:
                logger.error(f"Rollup refresh failed for planner {planner_id}: {e}")
