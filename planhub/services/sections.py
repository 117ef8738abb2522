"""
Section service.

Sections are ordered within their planner and a planner always keeps at
least one. Creates and deletes of one planner's sections run under that
planner's section scope lock, the same lock the coordinator takes for
reorders and bulk writes.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..database.repositories.sections import SectionRepository
from ..exceptions import NotFoundError, ValidationError
from ..models.entities import Section, SectionSettings, SectionType, ScopeStatistics
from .access import AccessControlResolver
from .audit import AuditAction
from .coordinator import BulkCoordinator
from .filters import build_activity_filters
from .pipeline import MutationContext, MutationPipeline, build_model, pick_fields
from .quota import QuotaEnforcer
from .statistics import RollupUpdater, StatisticsAggregator

logger = logging.getLogger(__name__)

CREATE_FIELDS = ("title", "description", "type", "settings", "order")
UPDATE_FIELDS = ("title", "description", "type", "settings")
BULK_FIELDS = ("description", "type", "settings")


class SectionService:
    """Section operations scoped to a planner."""

    def __init__(
        self,
        sections: SectionRepository,
        access: AccessControlResolver,
        quota: QuotaEnforcer,
        statistics: StatisticsAggregator,
        rollups: RollupUpdater,
        coordinator: BulkCoordinator,
        pipeline: MutationPipeline,
        timezone: str = "UTC",
    ):
        self.sections = sections
        self.access = access
        self.quota = quota
        self.statistics = statistics
        self.rollups = rollups
        self.coordinator = coordinator
        self.pipeline = pipeline
        self.timezone = timezone

    def _scope(self, planner_id: str) -> str:
        return self.coordinator.scope("section", planner_id)

    async def _fresh(self, section_id: str) -> Section:
        section = await self.sections.get_fresh(section_id)
        if section is None:
            raise NotFoundError("section", section_id)
        return section

    async def _require_all(self, planner_ids: Sequence[str], user_id: str, capability: str):
        for planner_id in dict.fromkeys(planner_ids):
            await self.access.require(planner_id, user_id, capability)

    # ==================== READS ====================

    async def get(self, section_id: str, user_id: str) -> Section:
        section = await self.sections.require(section_id)
        await self.access.require(section.planner_id, user_id, "can_view")
        return section

    async def list(self, planner_id: str, user_id: str) -> List[Section]:
        """Sections of a planner ordered by position."""
        await self.access.require(planner_id, user_id, "can_view")
        return await self.sections.list_by_parent(planner_id)

    async def get_statistics(
        self, section_id: str, user_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> ScopeStatistics:
        section = await self.get(section_id, user_id)
        store_filters = build_activity_filters(filters, self.timezone)
        return await self.statistics.section_statistics(section.id, store_filters)

    # ==================== CREATE ====================

    async def create(self, planner_id: str, user_id: str, data: Dict[str, Any]) -> Section:
        """
        Add a section to a planner, after the last one unless an order is
        given.

        Raises:
            ForbiddenError: missing can_edit
            QuotaExceededError: plan section limit reached
            ValidationError: invalid data or an order already taken
        """
        ctx = MutationContext("create_section", user_id, "section", payload=data)

        async def validate(ctx: MutationContext):
            fields = pick_fields(ctx.payload, CREATE_FIELDS, "section")
            section = build_model(Section, {**fields, "planner_id": planner_id, "created_by": user_id})
            if not section.title.strip():
                raise ValidationError("Section title is required")
            if section.order < 0:
                raise ValidationError("Section order must not be negative")
            ctx.state["section"] = section
            ctx.entity_id = section.id

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_edit")

        async def quota_check(ctx: MutationContext):
            await self.quota.check_section_create(ctx.planner)

        async def persist(ctx: MutationContext):
            section = ctx.state["section"]
            siblings = await self.sections.list_fresh(planner_id)
            if "order" in ctx.payload:
                if any(s.order == section.order for s in siblings):
                    raise ValidationError(f"Order {section.order} is already taken in this planner")
            else:
                section.order = max((s.order for s in siblings), default=-1) + 1

            ctx.result = await self.sections.create(section)
            ctx.audit_action = AuditAction.SECTION_CREATE
            ctx.audit_details = {"planner_id": planner_id, "title": section.title}

        async with self.coordinator.locks.hold(self._scope(planner_id)):
            return await self.pipeline.run(
                ctx, validate=validate, authorize=authorize, quota_check=quota_check, persist=persist
            )

    # ==================== UPDATE ====================

    async def update(
        self,
        section_id: str,
        user_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Section:
        ctx = MutationContext("update_section", user_id, "section", section_id, payload=fields)

        async def validate(ctx: MutationContext):
            ctx.state["fields"] = pick_fields(ctx.payload, UPDATE_FIELDS, "section")
            if not ctx.state["fields"]:
                raise ValidationError("No fields to update")

        async def authorize(ctx: MutationContext):
            section = await self._fresh(section_id)
            ctx.planner, ctx.capabilities = await self.access.require(section.planner_id, user_id, "can_edit")
            ctx.state["section"] = section

        async def persist(ctx: MutationContext):
            section = ctx.state["section"]
            changes = dict(ctx.state["fields"])
            if isinstance(changes.get("settings"), dict):
                changes["settings"] = {**section.settings.model_dump(), **changes["settings"]}
            merged = build_model(Section, {**section.to_document(), **changes})
            if not merged.title.strip():
                raise ValidationError("Section title is required")

            updates = {name: getattr(merged, name) for name in changes}
            ctx.result = await self.sections.update(section_id, updates, expected_version)
            ctx.audit_action = AuditAction.SECTION_UPDATE
            ctx.audit_details = {"fields": sorted(changes)}

        return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    # ==================== DELETE ====================

    async def delete(self, section_id: str, user_id: str) -> Section:
        """
        Delete a section with its activities.

        Raises:
            ValidationError: it is the planner's last section
        """
        section = await self._fresh(section_id)
        ctx = MutationContext("delete_section", user_id, "section", section_id)

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(section.planner_id, user_id, "can_edit")
            if await self.sections.count_in_planner(section.planner_id) <= 1:
                raise ValidationError("Cannot delete the last section of a planner")

        async def persist(ctx: MutationContext):
            ctx.result = await self.sections.delete(section_id)
            ctx.audit_action = AuditAction.SECTION_DELETE
            ctx.audit_details = {"planner_id": section.planner_id, "title": section.title}

        async def cache_update(ctx: MutationContext):
            await self.rollups.refresh(planner_ids=[section.planner_id])

        # The activity scope keeps creates and moves into this section out until it is gone
        activity_scope = self.coordinator.scope("activity", section_id)
        async with self.coordinator.locks.hold(self._scope(section.planner_id), activity_scope):
            return await self.pipeline.run(
                ctx,
                authorize=authorize,
                persist=persist,
                cache_update=cache_update,
            )

    # ==================== REORDER / BULK ====================

    async def reorder(self, planner_id: str, user_id: str, items: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Set the order of several sections of one planner at once."""
        ctx = MutationContext("reorder_sections", user_id, "section", planner_id, payload={"items": items})

        async def authorize(ctx: MutationContext):
            ctx.planner, ctx.capabilities = await self.access.require(planner_id, user_id, "can_edit")

        async def persist(ctx: MutationContext):
            result = await self.coordinator.reorder("section", planner_id, items)
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.SECTION_REORDER
            ctx.audit_details = {"planner_id": planner_id, "count": len(result.succeeded)}

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist)

    async def bulk_update(self, user_id: str, section_ids: Sequence[str], fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the same fields to several sections; every planner touched needs can_edit."""
        ctx = MutationContext("bulk_update_sections", user_id, "section", payload=fields)

        async def validate(ctx: MutationContext):
            changes = pick_fields(ctx.payload, BULK_FIELDS, "section")
            if "type" in changes:
                try:
                    changes["type"] = SectionType(changes["type"]).value
                except ValueError:
                    raise ValidationError(f"Invalid section type: {changes['type']}") from None
            if "settings" in changes:
                given = changes["settings"] or {}
                if not isinstance(given, dict):
                    raise ValidationError("settings must be an object")
                validated = build_model(SectionSettings, given).model_dump()
                changes["settings"] = {name: validated[name] for name in given if name in validated}
            ctx.state["fields"] = changes

        async def authorize(ctx: MutationContext):
            sections = await self.sections.find_by_ids(section_ids)
            await self._require_all([s.planner_id for s in sections], user_id, "can_edit")

        async def persist(ctx: MutationContext):
            fields = ctx.state["fields"]

            def merged_settings(doc: Dict[str, Any]) -> Dict[str, Any]:
                if "settings" not in fields:
                    return {}
                return {"settings": {**(doc.get("settings") or {}), **fields["settings"]}}

            result = await self.coordinator.bulk_update("section", section_ids, fields, per_document=merged_settings)
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.SECTION_BULK_UPDATE
            ctx.audit_details = {"ids": result.succeeded, "fields": sorted(ctx.state["fields"])}

        return await self.pipeline.run(ctx, validate=validate, authorize=authorize, persist=persist)

    async def bulk_delete(self, user_id: str, section_ids: Sequence[str]) -> Dict[str, Any]:
        """
        Delete several sections with their activities in one batch.

        Raises:
            ValidationError: the batch would leave a planner without sections
        """
        ctx = MutationContext("bulk_delete_sections", user_id, "section", payload={"ids": list(section_ids)})

        async def authorize(ctx: MutationContext):
            sections = await self.sections.find_by_ids(section_ids)
            await self._require_all([s.planner_id for s in sections], user_id, "can_edit")

        async def keeps_one_section(docs: List[Dict[str, Any]]):
            removing: Dict[str, int] = {}
            for doc in docs:
                removing[doc["planner_id"]] = removing.get(doc["planner_id"], 0) + 1
            for planner_id, count in removing.items():
                if await self.sections.count_in_planner(planner_id) - count < 1:
                    raise ValidationError(
                        "Cannot delete every section of a planner",
                        {"planner_id": planner_id},
                    )

        async def persist(ctx: MutationContext):
            result = await self.coordinator.bulk_delete("section", section_ids, before_write=keeps_one_section)
            ctx.state["bulk"] = result
            ctx.result = result.to_dict()
            ctx.audit_action = AuditAction.SECTION_BULK_DELETE
            ctx.audit_details = {"ids": result.succeeded}

        async def cache_update(ctx: MutationContext):
            await self.rollups.refresh(planner_ids=ctx.state["bulk"].planner_ids)

        return await self.pipeline.run(ctx, authorize=authorize, persist=persist, cache_update=cache_update)
