"""
Activity service.

Activities live in a section and mirror its planner. Every mutation
recomputes the rollups of the sections and planners it touched, and
keeps completed_at set exactly while the status is completed.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from pydantic import TypeAdapter
from pydantic import ValidationError as ModelValidationError

from ..database.repositories.activities import ActivityRepository
from ..database.repositories.sections import SectionRepository
from ..database.store import Filter
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models.entities import (
    OPEN_STATUSES,
    Activity,
    ActivityPriority,
    ActivityStatus,
    ActivityType,
    Page,
    ScopeStatistics,
    Section,
)
from ..utils.datetime_utils import get_local_now, to_naive_local
from ..utils.dependency_validator import DependencyValidator
from .access import AccessControlResolver
from .audit import AuditAction
from .coordinator import BulkCoordinator
from .filters import SORTABLE_FIELDS, build_activity_filters
from .pipeline import MutationContext, MutationPipeline, build_model, pick_fields
from .quota import QuotaEnforcer
from .statistics import RollupUpdater, StatisticsAggregator

logger = logging.getLogger(__name__)

CREATE_FIELDS = (
    "title", "description", "type", "status", "priority", "due_date", "tags",
    "dependencies", "assignee", "order", "metadata", "recurring",
)
UPDATE_FIELDS = (
    "title", "description", "type", "status", "priority", "due_date", "tags",
    "dependencies", "assignee", "metadata", "recurring",
)
BULK_FIELDS = ("status", "priority", "type", "assignee", "due_date", "tags")

MAX_PAGE_SIZE = 200
MAX_CONFLICT_RETRIES = 3

_DUE_DATE = TypeAdapter(Optional[datetime])


class ActivityService:
    """Activity operations, lookups and statistics."""

    def __init__(
        self,
        activities: ActivityRepository,
        sections: SectionRepository,
        access: AccessControlResolver,
        quota: QuotaEnforcer,
        statistics: StatisticsAggregator,
        rollups: RollupUpdater,
        coordinator: BulkCoordinator,
        pipeline: MutationPipeline,
        enforce_dependency_dag: bool = True,
        scan_limit: int = 10000,
        upcoming_days: int = 7,
        timezone: str = "UTC",
    ):
        self.activities = activities
        self.sections = sections
        self.access = access
        self.quota = quota
        self.statistics = statistics
        self.rollups = rollups
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.enforce_dependency_dag = enforce_dependency_dag
        self.scan_limit = scan_limit
        self.upcoming_days = upcoming_days
        self.timezone = timezone

    # ==================== HELPERS ====================

    def _now(self):
        return get_local_now(self.timezone)

    async def require_fresh(self, activity_id: str) -> Activity:
        activity = await self.activities.get_fresh(activity_id)
        if activity is None:
            raise NotFoundError("activity", activity_id)
        return activity

    async def _section(self, section_id: str) -> Section:
        section = await self.sections.get_fresh(section_id)
        if section is None:
            raise NotFoundError("section", section_id)
        return section

    def _scope(self, section_id: str) -> str:
        return self.coordinator.scope("activity", section_id)

    @staticmethod
    def _entity_lock(activity_id: str) -> str:
        """Lock name serializing writes to one activity."""
        return f"activity:{activity_id}"

    async def _order_taken(self, section_id: str, order: int, exclude: Optional[str] = None) -> bool:
        filters = [Filter("section_id", "==", section_id), Filter("order", "==", order)]
        if exclude:
            filters.append(Filter("id", "!=", exclude))
        return await self.activities.count(filters) > 0

    def _completion_fields(self, status: Optional[str], previous: Optional[str] = None) -> Dict[str, Any]:
        """completed_at follows the status: set on entering completed, cleared on leaving."""
        if status is None or status == previous:
            return {}
        if status == ActivityStatus.COMPLETED.value:
            return {"completed_at": self._now()}
        return {"completed_at": None}

    async def _check_dependencies(self, activity_id: str, planner_id: str, dependencies: List[str]):
        """
        Dependencies must be other activities of the same planner and must
        not close a cycle.
        """
        if not self.enforce_dependency_dag or not dependencies:
            return

        graph = await self.activities.planner_graph(planner_id)
        invalid = DependencyValidator({activity_id: dependencies}).invalid_references(known_ids=graph)
        if invalid:
            raise ValidationError(
                "Dependencies must reference other activities of the same planner",
                {"invalid": sorted(set(invalid))},
            )

        cycles = [
            cycle
            for cycle in DependencyValidator(graph).with_edges(activity_id, dependencies).detect_circular_dependencies()
            if activity_id in cycle
        ]
        if cycles:
            raise ValidationError("Dependencies would create a cycle", {"cycle": cycles[0]})

    async def _require_all(self, planner_ids: Sequence[str], user_id: str, capability: str):
        for planner_id in dict.fromkeys(planner_ids):
            await self.access.require(planner_id, user_id, capability)

    async def _visible(self, docs: List[Dict[str, Any]], user_id: str) -> List[Activity]:
        """Drop activities of planners the user can no longer view."""
        allowed: Dict[str, bool] = {}
        visible = []
        for doc in docs:
            planner_id = doc["planner_id"]
            if planner_id not in allowed:
                try:
                    _, capabilities = await self.access.resolve(planner_id, user_id)
                    allowed[planner_id] = capabilities.can_view
                except NotFoundError:
                    allowed[planner_id] = False
            if allowed[planner_id]:
                visible.append(Activity.from_document(doc))
        return visible

    # ==================== READS ====================

    async def get(self, activity_id: str, user_id: str) -> Activity:
        activity = await self.activities.require(activity_id)
        await self.access.require(activity.planner_id, user_id, "can_view")
        return activity

    async def list(
        self,
        section_id: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: str = "order",
        descending: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """
        Activities of a section. The plain ordered listing is served from
        the section's cached list; filtered or re-sorted listings query
        the store.
        """
        section = await self.sections.require(section_id)
        await self.access.require(section.planner_id, user_id, "can_view")

        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort activities by {sort_by}", {"allowed": list(SORTABLE_FIELDS)})
        if limit < 1 or limit > MAX_PAGE_SIZE or offset < 0:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE} and offset not negative")

        store_filters = build_activity_filters(filters, self.timezone)
        if not store_filters and sort_by == "order" and not descending:
            items = await self.activities.list_by_parent(section_id)
            page = items[offset:offset + limit]
            return Page(
                items=page,
                total=len(items),
                page=(offset // limit) + 1,
                limit=limit,
                has_next=offset + len(page) < len(items),
                has_prev=offset > 0,
            )

        return await self.activities.find(
            [Filter("section_id", "==", section_id), *store_filters],
            order_by=sort_by,
            descending=descending,
            limit=limit,
            offset=offset,
        )

    async def get_statistics(
        self,
        scope: str,
        scope_id: str,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> ScopeStatistics:
        """Statistics of a section or planner scope."""
        store_filters = build_activity_filters(filters, self.timezone)
        if scope == "section":
            section = await self.sections.require(scope_id)
            await self.access.require(section.planner_id, user_id, "can_view")
            return await self.statistics.section_statistics(scope_id, store_filters)
        if scope == "planner":
            await self.access.require(scope_id, user_id, "can_view")
            return await self.statistics.planner_statistics(scope_id, store_filters)
        raise ValidationError(f"Unknown statistics scope: {scope}")

    async def due_soon(self, user_id: str, days: Optional[int] = None) -> List[Activity]:
        """Open activities assigned to the user and due within the window."""
        now = self._now()
        docs = await self.activities.scan([
            Filter("assignee", "==", user_id),
            Filter("status", "in", list(OPEN_STATUSES)),
            Filter("due_date", ">=", now),
            Filter("due_date", "<=", now + timedelta(days=days or self.upcoming_days)),
        ], limit=self.scan_limit)
        docs.sort(key=lambda d: to_naive_local(d["due_date"], self.timezone))
        return await self._visible(docs, user_id)

    async def overdue(self, user_id: str) -> List[Activity]:
        """Open activities assigned to the user whose due date has passed."""
        docs = await self.activities.scan([
            Filter("assignee", "==", user_id),
            Filter("status", "in", list(OPEN_STATUSES)),
            Filter("due_date", "<", self._now()),
        ], limit=self.scan_limit)
        docs.sort(key=lambda d: to_naive_local(d["due_date"], self.timezone))
        return await self._visible(docs, user_id)

    async def search(self, user_id: str, query: str, limit: int = 20) -> List[Activity]:
        """
        Case-insensitive match on title and description over activities
        the user created or is assigned, most recently updated first.
        """
        needle = (query or "").strip().lower()
        if not needle:
            raise ValidationError("Search query is required")

        seen: Set[str] = set()
        matches = []
        for field_name in ("created_by", "assignee"):
            for doc in await self.activities.scan([Filter(field_name, "==", user_id)], limit=self.scan_limit):
                if doc["id"] in seen:
                    continue
                seen.add(doc["id"])
                text = f"{doc.get('title') or ''} {doc.get('description') or ''}".lower()
                if needle in text:
                    matches.append(doc)

        matches.sort(key=lambda d: d.get("updated_at") or d.get("created_at"), reverse=True)
        visible = await self._visible(matches, user_id)
        return visible[:limit]

    # ==================== CREATE ====================

    async def create(self, section_id: str, user_id: str, data: Dict[str, Any]) -> Activity:
        """
        Add an activity to a section, after the last one unless an order
        is given.

        Raises:
            ForbiddenError: missing can_edit
            QuotaExceededError: plan or section activity limit reached
            ValidationError: invalid data, taken order or bad dependencies
        """
        ctx = MutationContext("create_activity", user_id, "activity", payload=data)

        async def validate(ctx: MutationContext):
            section = await self._section(section_id)
            fields = pick_fields(ctx.payload, CREATE_FIELDS, "activity")
            fields.setdefault("type", section.settings.default_activity_type)
            activity = build_model(Activity, {
                **fields,
                "section_id": section_id,
                "planner_id": section.planner_id,
                "created_by": user_id,
            })
            if not activity.title.strip():
                raise ValidationError("Activity title is required")
            if activity.order < 0:
                raise ValidationError("Activity order must not be negative")
            activity.completed_at = self._now() if activity.is_completed else None
            activity.due_date = to_naive_local(activity.due_date, self.timezone)
            ctx.state["section"] = section
            ctx.state["activity"] = activity
            ctx.entity_id = activity.id

        async def authorize(ctx: MutationContext):
            planner_id = ctx.state["section"].planner_id
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_edit")

        async def quota_check(ctx: MutationContext):
            await self.quota.check_activity_create(ctx.planner, ctx.state["section"])

        async def persist(ctx: MutationContext):
            activity = ctx.state["activity"]
            if "order" in ctx.payload:
                if await self._order_taken(section_id, activity.order):
                    raise ValidationError(f"Order {activity.order} is already taken in this section")
            else:
                activity.order = await self.activities.max_order(section_id) + 1
            await self._check_dependencies(activity.id, activity.planner_id, activity.dependencies)

            ctx.result = await self.activities.create(activity)
            ctx.audit_action = AuditAction.ACTIVITY_CREATE
            ctx.audit_details = {"section_id": section_id, "title": activity.title}

        async def cache_update(ctx: MutationContext):
            await self.rollups.refresh([section_id], [ctx.result.planner_id])

        async with self.coordinator.locks.hold(self._scope(section_id)):
            return await self.pipeline.run(
                ctx,
                validate=validate,
                authorize=authorize,
                quota_check=quota_check,
                persist=persist,
                cache_update=cache_update,
            )

    # ==================== UPDATE ====================

    async def update(
        self,
        activity_id: str,
        user_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Activity:
        """
        Update activity fields.

        Raises:
            NotFoundError: the activity is gone (including deleted meanwhile)
            ConflictError: expected_version is stale
        """
        ctx = MutationContext("update_activity", user_id, "activity", activity_id, payload=fields)

        async def validate(ctx: MutationContext):
            ctx.state["fields"] = pick_fields(ctx.payload, UPDATE_FIELDS, "activity")
            if not ctx.state["fields"]:
                raise ValidationError("No fields to update")

        async def authorize(ctx: MutationContext):
            activity = await self.require_fresh(activity_id)
            ctx.planner, ctx.capabilities = await self.access.require(activity.planner_id, user_id, "can_edit")
            ctx.state["activity"] = activity

        async def persist(ctx: MutationContext):
            activity = ctx.state["activity"]
            changes = dict(ctx.state["fields"])
            if isinstance(changes.get("metadata"), dict):
                changes["metadata"] = {**activity.metadata.model_dump(), **changes["metadata"]}

            merged = build_model(Activity, {**activity.to_document(), **changes})
            if not merged.title.strip():
                raise ValidationError("Activity title is required")
            if "dependencies" in changes:
                await self._check_dependencies(activity_id, activity.planner_id, merged.dependencies)

            updates = {name: getattr(merged, name) for name in changes}
            if "due_date" in updates:
                updates["due_date"] = to_naive_local(updates["due_date"], self.timezone)
            updates.update(self._completion_fields(merged.status, activity.status))

            ctx.result = await self.activities.update(activity_id, updates, expected_version)
            ctx.audit_action = AuditAction.ACTIVITY_UPDATE
            ctx.audit_details = {"fields": sorted(changes)}
            if "status" in changes:
                ctx.audit_details["status"] = {"from": activity.status, "to": merged.status}

        async def cache_update(ctx: MutationContext):
            await self.rollups.refresh([ctx.result.section_id], [ctx.result.planner_id])

        async with self.coordinator.locks.hold(self._entity_lock(activity_id)):
            return await self.pipeline.run(
                ctx, validate=validate, authorize=authorize, persist=persist, cache_update=cache_update
            )

    async def record_time(self, activity_id: str, user_id: str, minutes: int) -> Activity:
        """
        Add tracked minutes to metadata.actual_duration through the update
        path, retrying on concurrent modification.
        """
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            activity = await self.require_fresh(activity_id)
            total = (activity.metadata.actual_duration or 0) + minutes
            try:
                return await self.update(
                    activity_id,
                    user_id,
                    {"metadata": {"actual_duration": total}},
                    expected_version=activity.version,
                )
            except ConflictError:
                if attempt == MAX_CONFLICT_RETRIES:
                    raise
                logger.debug(f"Retrying time update on activity {activity_id} (attempt {attempt})")

    # ==================== MOVE ====================

    async def move(
        self,
        activity_id: str,
        user_id: str,
        target_section_id: str,
        order: Optional[int] = None,
    ) -> Activity:
        """
        Move an activity to another section of the same planner, at the end
        unless an order is given.

        Raises:
            ValidationError: the target section belongs to another planner,
                or the order is taken
        """
        ctx = MutationContext(
            "move_activity", user_id, "activity", activity_id,
            payload={"section_id": target_section_id, "order": order},
        )

        async def validate(ctx: MutationContext):
            if order is not None and order < 0:
                raise ValidationError("Activity order must not be negative")
            activity = await self.require_fresh(activity_id)
            target = await self._section(target_section_id)
            if target.planner_id != activity.planner_id:
                raise ValidationError("Activities can only move between sections of the same planner")
            ctx.state["activity"] = activity
            ctx.state["target"] = target

        async def authorize(ctx: MutationContext):
            planner_id = ctx.state["activity"].planner_id
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_edit")

        async def quota_check(ctx: MutationContext):
            if ctx.state["activity"].section_id != target_section_id:
                await self.quota.check_activity_create(ctx.planner, ctx.state["target"])

        async def persist(ctx: MutationContext):
            activity = ctx.state["activity"]
            new_order = order
            if new_order is None:
                if activity.section_id == target_section_id:
                    new_order = activity.order
                else:
                    new_order = await self.activities.max_order(target_section_id) + 1
            elif await self._order_taken(target_section_id, new_order, exclude=activity_id):
                raise ValidationError(f"Order {new_order} is already taken in the target section")

            ctx.result = await self.activities.update(
                activity_id, {"section_id": target_section_id, "order": new_order}
            )
            ctx.audit_action = AuditAction.ACTIVITY_MOVE
            ctx.audit_details = {"from": activity.section_id, "to": target_section_id, "order": new_order}

        async def cache_update(ctx: MutationContext):
            source = ctx.state["activity"]
            await self.rollups.refresh([source.section_id, target_section_id], [source.planner_id])

        async with self.coordinator.locks.hold(self._scope(target_section_id), self._entity_lock(activity_id)):
            return await self.pipeline.run(
                ctx,
                validate=validate,
                authorize=authorize,
                quota_check=quota_check,
                persist=persist,
                cache_update=cache_update,
            )

    # ==================== DELETE ====================

    async def delete(self, activity_id: str, user_id: str) -> Activity:
        ctx = MutationContext("delete_activity", user_id, "activity", activity_id)

        async def authorize(ctx: MutationContext):
            activity = await self.require_fresh(activity_id)
            ctx.planner, ctx.capabilities = await self.access.require(activity.planner_id, user_id, "can_edit")

        async def persist(ctx: MutationContext):
            ctx.result = await self.activities.delete(activity_id)
            ctx.audit_action = AuditAction.ACTIVITY_DELETE
            ctx.audit_details = {"section_id": ctx.result.section_id, "title": ctx.result.title}

        async def cache_update(ctx: MutationContext):
            await self.rollups.refresh([ctx.result.section_id], [ctx.result.planner_id])

        async with self.coordinator.locks.hold(self._entity_lock(activity_id)):
            return await self.pipeline.run(ctx, authorize=authorize, persist=persist, cache_update=cache_update)

    # ==================== REORDER / BULK ====================

    async def reorder(self, section_id: str, user_id: str, items: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Set the order of several activities of one section at once."""
        ctx = MutationContext("reorder_activities", user_id, "activity", section_id, payload={"items": items})

        async def authorize(ctx: MutationContext):
            section = await self._section(section_id)
            ctx.planner, ctx.capabilities = await self.access.require(section.planner_id, user_id, "can_edit")

        async def persist(ctx: MutationContext):
            result = await self.coordinator.reorder("activity", section_id, items)
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.ACTIVITY_REORDER
            ctx.audit_details = {"section_id": section_id, "count": len(result.succeeded)}

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist)

    async def bulk_update(self, user_id: str, activity_ids: Sequence[str], fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the same fields to several activities; every planner touched needs can_edit."""
        ctx = MutationContext("bulk_update_activities", user_id, "activity", payload=fields)

        async def validate(ctx: MutationContext):
            changes = pick_fields(ctx.payload, BULK_FIELDS, "activity")
            for name, enum in (("status", ActivityStatus), ("priority", ActivityPriority), ("type", ActivityType)):
                if name in changes:
                    try:
                        changes[name] = enum(changes[name]).value
                    except ValueError:
                        raise ValidationError(f"Invalid {name}: {changes[name]}") from None
            if "due_date" in changes:
                try:
                    due = _DUE_DATE.validate_python(changes["due_date"])
                except ModelValidationError:
                    raise ValidationError(f"Invalid due_date: {changes['due_date']}") from None
                changes["due_date"] = to_naive_local(due, self.timezone)
            if "tags" in changes and not isinstance(changes["tags"], list):
                raise ValidationError("tags must be a list")
            ctx.state["fields"] = changes

        async def authorize(ctx: MutationContext):
            activities = await self.activities.find_by_ids(activity_ids)
            await self._require_all([a.planner_id for a in activities], user_id, "can_edit")

        async def persist(ctx: MutationContext):
            status = ctx.state["fields"].get("status")

            def completion(doc: Dict[str, Any]) -> Dict[str, Any]:
                return self._completion_fields(status, doc.get("status"))

            result = await self.coordinator.bulk_update(
                "activity", activity_ids, ctx.state["fields"], per_document=completion
            )
            ctx.state["bulk"] = result
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.ACTIVITY_BULK_UPDATE
            ctx.audit_details = {"ids": result.succeeded, "fields": sorted(ctx.payload)}

        async def cache_update(ctx: MutationContext):
            result = ctx.state["bulk"]
            await self.rollups.refresh(result.parents, result.planner_ids)

        return await self.pipeline.run(
            ctx, validate=validate, authorize=authorize, persist=persist, cache_update=cache_update
        )

    async def bulk_delete(self, user_id: str, activity_ids: Sequence[str]) -> Dict[str, Any]:
        """Delete several activities (and their time entries) in one batch."""
        ctx = MutationContext("bulk_delete_activities", user_id, "activity", payload={"ids": list(activity_ids)})

        async def authorize(ctx: MutationContext):
            activities = await self.activities.find_by_ids(activity_ids)
            await self._require_all([a.planner_id for a in activities], user_id, "can_edit")

        async def persist(ctx: MutationContext):
            result = await self.coordinator.bulk_delete("activity", activity_ids)
            ctx.state["bulk"] = result
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.ACTIVITY_BULK_DELETE
            ctx.audit_details = {"ids": result.succeeded}

        async def cache_update(ctx: MutationContext):
            result = ctx.state["bulk"]
            await self.rollups.refresh(result.parents, result.planner_ids)

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist, cache_update=cache_update)
