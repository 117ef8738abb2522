"""
Planner service.

Caller-facing planner operations: lifecycle, sharing, archiving,
duplication and statistics. Every mutation runs through the
MutationPipeline and is authorized against capabilities resolved fresh
from the store.
"""

import logging
from typing import Any, Dict, List, Optional

from ..database.repositories.activities import ActivityRepository
from ..database.repositories.collaborators import CollaboratorRepository
from ..database.repositories.planners import PlannerRepository
from ..database.repositories.sections import SectionRepository
from ..database.store import Filter
from ..exceptions import NotFoundError, ValidationError
from ..models.entities import (
    DEFAULT_SECTIONS,
    Activity,
    Page,
    Planner,
    PlannerDetails,
    PlannerStatistics,
    Role,
    Section,
    new_id,
)
from ..utils.datetime_utils import get_local_now
from .access import AccessControlResolver
from .audit import AuditAction
from .coordinator import BulkCoordinator
from .filters import build_activity_filters, planner_matcher, planner_sort_key
from .pipeline import MutationContext, MutationPipeline, build_model, pick_fields
from .quota import QuotaEnforcer
from .statistics import RollupUpdater, StatisticsAggregator

logger = logging.getLogger(__name__)

CREATE_FIELDS = ("title", "description", "color", "icon", "is_public", "allow_collaboration", "settings", "tags")
UPDATE_FIELDS = CREATE_FIELDS
# Changing who can see a planner is a sharing decision
SHARING_FIELDS = ("is_public", "allow_collaboration")

MAX_PAGE_SIZE = 100


class PlannerService:
    """Planner lifecycle, sharing and statistics."""

    def __init__(
        self,
        planners: PlannerRepository,
        collaborators: CollaboratorRepository,
        sections: SectionRepository,
        activities: ActivityRepository,
        access: AccessControlResolver,
        quota: QuotaEnforcer,
        statistics: StatisticsAggregator,
        rollups: RollupUpdater,
        coordinator: BulkCoordinator,
        pipeline: MutationPipeline,
        timezone: str = "UTC",
    ):
        self.planners = planners
        self.collaborators = collaborators
        self.sections = sections
        self.activities = activities
        self.access = access
        self.quota = quota
        self.statistics = statistics
        self.rollups = rollups
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.timezone = timezone

    def _default_sections(self, planner_id: str, user_id: str) -> List[Section]:
        return [
            Section(
                planner_id=planner_id,
                title=title,
                description=description,
                order=order,
                settings={"color": color, "icon": icon},
                created_by=user_id,
            )
            for order, (title, description, color, icon) in enumerate(DEFAULT_SECTIONS)
        ]

    # ==================== CREATE ====================

    async def create(self, user_id: str, data: Dict[str, Any]) -> Planner:
        """
        Create a planner owned by the user, with the default sections.

        Raises:
            ValidationError: invalid data
            QuotaExceededError: the user's plan allows no more planners
        """
        ctx = MutationContext("create_planner", user_id, "planner", payload=data)

        async def validate(ctx: MutationContext):
            fields = pick_fields(ctx.payload, CREATE_FIELDS, "planner")
            planner = build_model(Planner, {**fields, "owner_id": user_id})
            if not planner.title.strip():
                raise ValidationError("Planner title is required")
            ctx.state["planner"] = planner
            ctx.entity_id = planner.id

        async def quota_check(ctx: MutationContext):
            await self.quota.check_planner_create(user_id)

        async def persist(ctx: MutationContext):
            planner = ctx.state["planner"]
            ctx.result = await self.planners.create_with_sections(
                planner, self._default_sections(planner.id, user_id)
            )
            ctx.audit_action = AuditAction.PLANNER_CREATE
            ctx.audit_details = {"title": planner.title}

        # Serialize creates per user so two requests cannot both pass the quota
        async with self.coordinator.locks.hold(self.coordinator.scope("planner", user_id)):
            return await self.pipeline.run(ctx, validate=validate, quota_check=quota_check, persist=persist)

    # ==================== READS ====================

    async def get(self, planner_id: str, user_id: str) -> PlannerDetails:
        """Planner with its statistics and the caller's permissions."""
        _, capabilities = await self.access.require(planner_id, user_id, "can_view")
        planner = await self.planners.require(planner_id)
        statistics = await self.statistics.planner_statistics(planner_id)
        return PlannerDetails(
            planner=planner,
            statistics=statistics,
            permissions=capabilities.to_dict(),
        )

    async def list(self, user_id: str, include_archived: bool = True) -> Dict[str, List[Planner]]:
        """Planners the user owns and planners shared with them."""
        own = await self.planners.list_by_owner(user_id)
        shared = await self.planners.list_shared(user_id)
        if not include_archived:
            own = [p for p in own if not p.is_archived]
            shared = [p for p in shared if not p.is_archived]
        return {"own": own, "shared": shared}

    async def find(
        self,
        user_id: str,
        filters: Optional[Dict[str, Any]] = None,
        shared: bool = False,
        sort_by: str = "updated_at",
        descending: bool = True,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """
        One page of the planners the user owns (or, with shared, those
        shared with them) matching the criteria.

        Criteria: search, tags, is_archived, is_public. Filtering and
        sorting run over the cached per-user listing.

        Raises:
            ValidationError: unknown criteria, sort field or bad paging
        """
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"page must be positive and limit between 1 and {MAX_PAGE_SIZE}")
        matches = planner_matcher(filters)
        sort_key = planner_sort_key(sort_by)

        planners = await (self.planners.list_shared(user_id) if shared else self.planners.list_by_owner(user_id))
        selected = sorted((p for p in planners if matches(p)), key=sort_key, reverse=descending)

        offset = (page - 1) * limit
        items = selected[offset:offset + limit]
        return Page(
            items=items,
            total=len(selected),
            page=page,
            limit=limit,
            has_next=offset + len(items) < len(selected),
            has_prev=page > 1,
        )

    async def get_statistics(
        self, planner_id: str, user_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> PlannerStatistics:
        await self.access.require(planner_id, user_id, "can_view")
        store_filters = build_activity_filters(filters, self.timezone)
        return await self.statistics.planner_statistics(planner_id, store_filters)

    # ==================== UPDATE ====================

    async def update(
        self,
        planner_id: str,
        user_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Planner:
        """
        Update planner fields. Visibility changes need the share capability.

        Raises:
            ForbiddenError: missing can_edit (or can_share for visibility)
            ConflictError: expected_version is stale
        """
        ctx = MutationContext("update_planner", user_id, "planner", planner_id, payload=fields)

        async def validate(ctx: MutationContext):
            ctx.state["fields"] = pick_fields(ctx.payload, UPDATE_FIELDS, "planner")
            if not ctx.state["fields"]:
                raise ValidationError("No fields to update")

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_edit")
            if set(ctx.state["fields"]) & set(SHARING_FIELDS):
                await self.access.require(planner_id, user_id, "can_share")

        async def persist(ctx: MutationContext):
            changes = dict(ctx.state["fields"])
            if isinstance(changes.get("settings"), dict):
                changes["settings"] = {**ctx.planner.settings.model_dump(), **changes["settings"]}
            merged = build_model(Planner, {**ctx.planner.to_document(), **changes})
            if not merged.title.strip():
                raise ValidationError("Planner title is required")

            updates = {name: getattr(merged, name) for name in changes}
            ctx.result = await self.planners.update(planner_id, updates, expected_version)
            ctx.audit_action = AuditAction.PLANNER_UPDATE
            ctx.audit_details = {"fields": sorted(changes)}

        return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    # ==================== DELETE ====================

    async def delete(self, planner_id: str, user_id: str) -> Planner:
        """Delete a planner and everything under it. Owner only."""
        ctx = MutationContext("delete_planner", user_id, "planner", planner_id)

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_delete")

        async def persist(ctx: MutationContext):
            ctx.result = await self.planners.delete(planner_id)
            ctx.audit_action = AuditAction.PLANNER_DELETE
            ctx.audit_details = {"title": ctx.result.title}

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist)

    # ==================== SHARING ====================

    async def share(self, planner_id: str, user_id: str, target_user_id: str, role: str) -> Planner:
        """
        Grant a role on the planner to another user.

        Raises:
            ValidationError: target is the owner, already a collaborator,
                or the role is unknown
        """
        ctx = MutationContext(
            "share_planner", user_id, "planner", planner_id,
            payload={"user_id": target_user_id, "role": role},
        )

        async def validate(ctx: MutationContext):
            ctx.state["role"] = _role(role)
            if not target_user_id:
                raise ValidationError("A user to share with is required")

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_share")
            if target_user_id == ctx.planner.owner_id:
                raise ValidationError("The owner already has full access")
            if await self.collaborators.get(planner_id, target_user_id) is not None:
                raise ValidationError("User is already a collaborator")

        async def persist(ctx: MutationContext):
            await self.collaborators.add(planner_id, target_user_id, ctx.state["role"], added_by=user_id)
            ctx.result = await self.planners.require(planner_id)
            ctx.audit_action = AuditAction.COLLABORATOR_ADD
            ctx.audit_details = {"collaborator": target_user_id, "role": ctx.state["role"].value}

        return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    async def update_collaborator(self, planner_id: str, user_id: str, target_user_id: str, role: str) -> Planner:
        ctx = MutationContext(
            "update_collaborator", user_id, "planner", planner_id,
            payload={"user_id": target_user_id, "role": role},
        )

        async def validate(ctx: MutationContext):
            ctx.state["role"] = _role(role)

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(
                planner_id, user_id, "can_manage_collaborators"
            )

        async def persist(ctx: MutationContext):
            try:
                await self.collaborators.update_role(planner_id, target_user_id, ctx.state["role"])
            except NotFoundError:
                raise NotFoundError("collaborator", target_user_id) from None
            ctx.result = await self.planners.require(planner_id)
            ctx.audit_action = AuditAction.COLLABORATOR_UPDATE
            ctx.audit_details = {"collaborator": target_user_id, "role": ctx.state["role"].value}

        return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    async def remove_collaborator(self, planner_id: str, user_id: str, target_user_id: str) -> Planner:
        ctx = MutationContext(
            "remove_collaborator", user_id, "planner", planner_id,
            payload={"user_id": target_user_id},
        )

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(
                planner_id, user_id, "can_manage_collaborators"
            )

        async def persist(ctx: MutationContext):
            try:
                await self.collaborators.remove(planner_id, target_user_id)
            except NotFoundError:
                raise NotFoundError("collaborator", target_user_id) from None
            ctx.result = await self.planners.require(planner_id)
            ctx.audit_action = AuditAction.COLLABORATOR_REMOVE
            ctx.audit_details = {"collaborator": target_user_id}

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist)

    # ==================== ARCHIVING ====================

    async def archive(self, planner_id: str, user_id: str) -> Planner:
        return await self._set_archived(planner_id, user_id, archived=True)

    async def unarchive(self, planner_id: str, user_id: str) -> Planner:
        return await self._set_archived(planner_id, user_id, archived=False)

    async def _set_archived(self, planner_id: str, user_id: str, archived: bool) -> Planner:
        operation = "archive_planner" if archived else "unarchive_planner"
        ctx = MutationContext(operation, user_id, "planner", planner_id)

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_archive")

        async def persist(ctx: MutationContext):
            if ctx.planner.is_archived == archived:
                ctx.result = await self.planners.require(planner_id)
                return
            archived_at = get_local_now(self.timezone) if archived else None
            ctx.result = await self.planners.update(planner_id, {"archived_at": archived_at})
            ctx.audit_action = AuditAction.PLANNER_ARCHIVE if archived else AuditAction.PLANNER_UNARCHIVE

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist)

    # ==================== DUPLICATE ====================

    async def duplicate(
        self,
        planner_id: str,
        user_id: str,
        title: Optional[str] = None,
        include_sections: bool = True,
        include_activities: bool = True,
    ) -> Planner:
        """
        Copy a planner the user can view into a new planner they own.

        Collaborators and time entries are not copied. Activity
        dependencies are remapped onto the copies. Without sections the
        copy gets the default sections.
        """
        ctx = MutationContext(
            "duplicate_planner", user_id, "planner", planner_id,
            payload={"title": title, "include_sections": include_sections,
                     "include_activities": include_activities},
        )

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_view")

        async def quota_check(ctx: MutationContext):
            await self.quota.check_planner_create(user_id)

        async def persist(ctx: MutationContext):
            source = ctx.planner
            copy = Planner(
                owner_id=user_id,
                title=title or f"{source.title} (Copy)",
                description=source.description,
                color=source.color,
                icon=source.icon,
                is_public=source.is_public,
                allow_collaboration=source.allow_collaboration,
                settings=source.settings,
                tags=list(source.tags),
            )

            sections: List[Section] = []
            activities: List[Activity] = []
            if include_sections:
                section_ids: Dict[str, str] = {}
                for section in await self.sections.list_fresh(planner_id):
                    clone = Section.model_validate({
                        **section.to_document(),
                        "id": new_id(), "planner_id": copy.id, "created_by": user_id,
                        "metadata": {}, "created_at": None, "updated_at": None, "version": 1,
                    })
                    sections.append(clone)
                    section_ids[section.id] = clone.id

                if include_activities:
                    with self.activities.store_errors("duplicate", planner_id):
                        docs = await self.activities.store.query(
                            self.activities.collection,
                            [Filter("planner_id", "==", planner_id)],
                            order_by="order",
                        )
                    activity_ids = {doc["id"]: new_id() for doc in docs}
                    for doc in docs:
                        if doc["section_id"] not in section_ids:
                            continue
                        activities.append(Activity.from_document({
                            **doc,
                            "id": activity_ids[doc["id"]],
                            "section_id": section_ids[doc["section_id"]],
                            "planner_id": copy.id,
                            "dependencies": [activity_ids[d] for d in doc.get("dependencies") or [] if d in activity_ids],
                            "created_by": user_id,
                            "created_at": None,
                            "updated_at": None,
                            "version": 1,
                        }))

            if not sections:
                sections = self._default_sections(copy.id, user_id)

            await self.planners.create_with_sections(copy, sections, activities)
            ctx.state["copy"] = copy
            ctx.state["section_ids"] = [s.id for s in sections]
            ctx.audit_action = AuditAction.PLANNER_DUPLICATE
            ctx.audit_details = {
                "source": planner_id,
                "copy": copy.id,
                "sections": len(sections),
                "activities": len(activities),
            }

        async def cache_update(ctx: MutationContext):
            copy = ctx.state["copy"]
            await self.rollups.refresh(ctx.state["section_ids"], [copy.id])
            ctx.result = await self.planners.require(copy.id)

        async with self.coordinator.locks.hold(self.coordinator.scope("planner", user_id)):
            result = await self.pipeline.run(
                ctx, authorize=authorize, quota_check=quota_check,
                persist=persist, cache_update=cache_update,
            )
        logger.info(f"Duplicated planner {planner_id} into {result.id} for {user_id}")
        return result


def _role(role: Any) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise ValidationError(
            f"Invalid role: {role}", {"allowed": [r.value for r in Role]}
        ) from None
