"""Section repository."""

import logging
from typing import List, Optional

from ...cache.keys import planner_sections_key, section_key
from ...exceptions import NotFoundError
from ...models.entities import Section
from ..store import BatchOp, Filter
from .base import BaseRepository

logger = logging.getLogger(__name__)


class SectionRepository(BaseRepository[Section]):
    """Repository for sections, ordered within their planner."""

    collection = "sections"
    entity = "section"
    model = Section
    parent_field = "planner_id"

    def item_key(self, entity_id: str) -> Optional[str]:
        return section_key(entity_id)

    def list_key(self, parent_id: str) -> Optional[str]:
        return planner_sections_key(parent_id)

    async def count_in_planner(self, planner_id: str) -> int:
        return await self.count([Filter("planner_id", "==", planner_id)])

    async def list_fresh(self, planner_id: str) -> List[Section]:
        """Sections of a planner straight from the store."""
        with self.store_errors("list", planner_id):
            docs = await self.store.query(
                self.collection,
                [Filter("planner_id", "==", planner_id)],
                order_by="order",
            )
        return [Section.from_document(doc) for doc in docs]

    async def delete(self, entity_id: str) -> Section:
        """Delete a section with its activities and their time entries, atomically."""
        section = await self.get_fresh(entity_id)
        if section is None:
            raise NotFoundError(self.entity, entity_id)

        with self.store_errors("delete", entity_id):
            activities = await self.store.query("activities", [Filter("section_id", "==", entity_id)])
            activity_ids = [a["id"] for a in activities]
            entries = []
            if activity_ids:
                entries = await self.store.query(
                    "time_entries", [Filter("activity_id", "in", activity_ids)]
                )

            ops = [BatchOp("delete", "time_entries", e["id"]) for e in entries]
            ops += [BatchOp("delete", "activities", a["id"]) for a in activities]
            ops.append(BatchOp("delete", self.collection, entity_id))
            await self.store.atomic_batch(ops)

        await self.invalidator.invalidate(
            self.entity, section, deleted=True, children={"activity": activities}
        )
        logger.info(f"Deleted section {entity_id} with {len(activities)} activities")
        return section
