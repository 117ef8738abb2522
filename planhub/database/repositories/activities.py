"""Activity repository."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ...cache.keys import activity_key, section_activities_key
from ...exceptions import NotFoundError
from ...models.entities import Activity
from ..store import BatchOp, Filter
from .base import BaseRepository

logger = logging.getLogger(__name__)


class ActivityRepository(BaseRepository[Activity]):
    """Repository for activities, ordered within their section."""

    collection = "activities"
    entity = "activity"
    model = Activity
    parent_field = "section_id"

    def item_key(self, entity_id: str) -> Optional[str]:
        return activity_key(entity_id)

    def list_key(self, parent_id: str) -> Optional[str]:
        return section_activities_key(parent_id)

    async def scan(self, filters: Sequence[Filter], limit: int) -> List[Dict[str, Any]]:
        """Raw documents for aggregation, capped at limit."""
        with self.store_errors("scan"):
            return await self.store.query(self.collection, list(filters), limit=limit)

    async def count_in_section(self, section_id: str, status: Optional[str] = None) -> int:
        filters = [Filter("section_id", "==", section_id)]
        if status:
            filters.append(Filter("status", "==", status))
        return await self.count(filters)

    async def count_in_planner(self, planner_id: str, status: Optional[str] = None) -> int:
        filters = [Filter("planner_id", "==", planner_id)]
        if status:
            filters.append(Filter("status", "==", status))
        return await self.count(filters)

    async def planner_graph(self, planner_id: str) -> Dict[str, List[str]]:
        """Dependency edges of every activity in a planner."""
        with self.store_errors("graph", planner_id):
            docs = await self.store.query(self.collection, [Filter("planner_id", "==", planner_id)])
        return {doc["id"]: list(doc.get("dependencies") or []) for doc in docs}

    async def delete(self, entity_id: str) -> Activity:
        """Delete an activity and its time entries atomically."""
        activity = await self.get_fresh(entity_id)
        if activity is None:
            raise NotFoundError(self.entity, entity_id)

        with self.store_errors("delete", entity_id):
            entries = await self.store.query("time_entries", [Filter("activity_id", "==", entity_id)])
            ops = [BatchOp("delete", "time_entries", e["id"]) for e in entries]
            ops.append(BatchOp("delete", self.collection, entity_id))
            await self.store.atomic_batch(ops)

        await self.invalidator.invalidate(self.entity, activity, deleted=True)
        logger.info(f"Deleted activity {entity_id}")
        return activity
