"""
Time tracking service.

A user runs at most one timer at a time. Stopping a timer adds its
minutes to the activity's metadata.actual_duration through the regular
activity update path, so rollups and caches follow.
"""

import logging
from typing import List, Optional

from ..database.repositories.time_entries import TimeEntryRepository
from ..exceptions import ForbiddenError, NotFoundError, ValidationError
from ..models.entities import TimeEntry
from ..utils.datetime_utils import get_local_now, minutes_between
from .access import AccessControlResolver
from .activities import ActivityService
from .audit import AuditAction
from .coordinator import BulkCoordinator
from .pipeline import MutationContext, MutationPipeline

logger = logging.getLogger(__name__)


class TimeTrackingService:
    """Start/stop timers on activities."""

    def __init__(
        self,
        time_entries: TimeEntryRepository,
        activities: ActivityService,
        access: AccessControlResolver,
        coordinator: BulkCoordinator,
        pipeline: MutationPipeline,
        timezone: str = "UTC",
    ):
        self.time_entries = time_entries
        self.activities = activities
        self.access = access
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.timezone = timezone

    def _scope(self, user_id: str) -> str:
        return self.coordinator.scope("time", user_id)

    async def start(self, activity_id: str, user_id: str, description: Optional[str] = None) -> TimeEntry:
        """
        Start a timer on an activity.

        Raises:
            ValidationError: the user already has a running timer
            ForbiddenError: missing can_edit on the activity's planner
        """
        ctx = MutationContext("start_timer", user_id, "time_entry", payload={"activity_id": activity_id})

        async def validate(ctx: MutationContext):
            running = await self.time_entries.get_active(user_id)
            if running is not None:
                raise ValidationError(
                    "A timer is already running",
                    {"time_entry_id": running.id, "activity_id": running.activity_id},
                )

        async def authorize(ctx: MutationContext):
            activity = await self.activities.require_fresh(activity_id)
            ctx.planner, ctx.capabilities = await self.access.require(activity.planner_id, user_id, "can_edit")

        async def persist(ctx: MutationContext):
            entry = TimeEntry(
                activity_id=activity_id,
                user_id=user_id,
                start_time=get_local_now(self.timezone),
                description=description,
            )
            ctx.entity_id = entry.id
            ctx.result = await self.time_entries.create(entry)
            ctx.audit_action = AuditAction.TIME_START
            ctx.audit_details = {"activity_id": activity_id}

        async with self.coordinator.locks.hold(self._scope(user_id)):
            return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    async def stop(self, user_id: str, entry_id: Optional[str] = None) -> TimeEntry:
        """
        Stop the user's running timer (optionally a specific one) and add
        the elapsed minutes to the activity.

        Raises:
            NotFoundError: no running timer (or not the one named)
        """
        ctx = MutationContext("stop_timer", user_id, "time_entry", entry_id)

        async def validate(ctx: MutationContext):
            running = await self.time_entries.get_active(user_id)
            if running is None or (entry_id and running.id != entry_id):
                raise NotFoundError("time_entry", entry_id or "active")
            ctx.state["entry"] = running
            ctx.entity_id = running.id

        async def persist(ctx: MutationContext):
            entry = ctx.state["entry"]
            end = get_local_now(self.timezone)
            duration = minutes_between(entry.start_time, end)
            ctx.result = await self.time_entries.update(entry.id, {"end_time": end, "duration": duration})
            ctx.audit_action = AuditAction.TIME_STOP
            ctx.audit_details = {"activity_id": entry.activity_id, "duration": duration}

        async def cache_update(ctx: MutationContext):
            entry = ctx.result
            if not entry.duration:
                return
            try:
                await self.activities.record_time(entry.activity_id, user_id, entry.duration)
            except (NotFoundError, ForbiddenError) as e:
                logger.info(f"Time entry {entry.id} not added to activity {entry.activity_id}: {e}")

        async with self.coordinator.locks.hold(self._scope(user_id)):
            return await self.pipeline.run(ctx, validate=validate, persist=persist, cache_update=cache_update)

    async def active_entry(self, user_id: str) -> Optional[TimeEntry]:
        return await self.time_entries.get_active(user_id)

    async def entries_for_user(self, user_id: str, limit: int = 100, offset: int = 0) -> List[TimeEntry]:
        return await self.time_entries.list_for_user(user_id, limit=limit, offset=offset)
