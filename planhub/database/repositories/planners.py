"""
Planner repository.

Planners are cached whole (with their collaborator list) at planner:{id}.
The per-user listings cache only planner ids, so a planner edit never
leaves a stale copy inside someone's list.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ...cache.keys import planner_key, shared_planners_key, user_planners_key
from ...exceptions import NotFoundError
from ...models.entities import Planner
from ..store import BatchOp, Filter
from .base import BaseRepository
from .collaborators import CollaboratorRepository

logger = logging.getLogger(__name__)


class PlannerRepository(BaseRepository[Planner]):
    """Repository for planners and their cascading delete."""

    collection = "planners"
    entity = "planner"
    model = Planner

    def __init__(self, store, cache, invalidator, collaborators: CollaboratorRepository,
                 item_ttl: int = 300, list_ttl: int = 300):
        super().__init__(store, cache, invalidator, item_ttl=item_ttl, list_ttl=list_ttl)
        self.collaborators = collaborators

    def item_key(self, entity_id: str) -> Optional[str]:
        return planner_key(entity_id)

    async def hydrate(self, doc: Dict[str, Any]) -> Planner:
        collaborators = await self.collaborators.list_for_planner(doc["id"])
        return Planner.from_document(doc, collaborators=collaborators)

    # ==================== LISTINGS ====================

    async def _planners_by_ids(self, ids: List[str]) -> List[Planner]:
        planners = []
        for planner_id in ids:
            planner = await self.get(planner_id)
            if planner is not None:
                planners.append(planner)
        return planners

    async def list_by_owner(self, user_id: str) -> List[Planner]:
        """Planners owned by a user, most recently updated first."""
        key = user_planners_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return await self._planners_by_ids(cached)

        with self.store_errors("list", user_id):
            docs = await self.store.query(
                self.collection,
                [Filter("owner_id", "==", user_id)],
                order_by="updated_at",
                descending=True,
            )
        planners = [await self.hydrate(doc) for doc in docs]

        await self.cache.set(key, [p.id for p in planners], ttl=self.list_ttl)
        for planner in planners:
            await self._cache_entity(planner)
        return planners

    async def list_shared(self, user_id: str) -> List[Planner]:
        """Planners where the user holds a collaborator role."""
        key = shared_planners_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return await self._planners_by_ids(cached)

        grants = await self.collaborators.list_for_user(user_id)
        planners = await self._planners_by_ids([g.planner_id for g in grants])

        await self.cache.set(key, [p.id for p in planners], ttl=self.list_ttl)
        return planners

    async def count_by_owner(self, user_id: str) -> int:
        return await self.count([Filter("owner_id", "==", user_id)])

    # ==================== WRITES ====================

    async def create_with_sections(
        self, planner: Planner, sections: List[Any], activities: Sequence[Any] = ()
    ) -> Planner:
        """Create a planner with its initial sections (and activities) in one batch."""
        ops = [BatchOp("set", self.collection, planner.id, planner.to_document())]
        ops += [BatchOp("set", "sections", s.id, s.to_document()) for s in sections]
        ops += [BatchOp("set", "activities", a.id, a.to_document()) for a in activities]

        with self.store_errors("create", planner.id):
            await self.store.atomic_batch(ops)

        created = await self.get_fresh(planner.id)
        if created is None:
            raise NotFoundError(self.entity, planner.id)

        await self.invalidator.invalidate(self.entity, created)
        await self.invalidator.invalidate_scopes("section", sections)
        if activities:
            await self.invalidator.invalidate_scopes("activity", activities)
        await self._cache_entity(created)

        logger.info(f"Created planner {created.id} with {len(sections)} sections")
        return created

    async def delete(self, entity_id: str) -> Planner:
        """
        Delete a planner with its sections, activities, collaborators and
        the time entries of its activities, in one atomic batch.
        """
        planner = await self.get_fresh(entity_id)
        if planner is None:
            raise NotFoundError(self.entity, entity_id)

        with self.store_errors("delete", entity_id):
            sections = await self.store.query("sections", [Filter("planner_id", "==", entity_id)])
            activities = await self.store.query("activities", [Filter("planner_id", "==", entity_id)])
            activity_ids = [a["id"] for a in activities]
            entries = []
            if activity_ids:
                entries = await self.store.query(
                    "time_entries", [Filter("activity_id", "in", activity_ids)]
                )

            ops = [BatchOp("delete", "time_entries", e["id"]) for e in entries]
            ops += [BatchOp("delete", "activities", a["id"]) for a in activities]
            ops += [BatchOp("delete", "sections", s["id"]) for s in sections]
            ops += [BatchOp("delete", "collaborators", c.id) for c in planner.collaborators]
            ops.append(BatchOp("delete", self.collection, entity_id))
            await self.store.atomic_batch(ops)

        await self.invalidator.invalidate(
            self.entity,
            planner,
            deleted=True,
            children={
                "section": sections,
                "activity": activities,
                "collaborator": planner.collaborators,
            },
        )
        logger.info(
            f"Deleted planner {entity_id} with {len(sections)} sections, "
            f"{len(activities)} activities, {len(entries)} time entries"
        )
        return planner
