"""
Collaborator repository.

One document per (planner, user) pair, keyed "{planner_id}:{user_id}".
Collaborator records are read straight from the store: access decisions
must never see a stale grant.
"""

import logging
from typing import List, Optional

from ...models.entities import Collaborator, Role
from ..store import Filter
from .base import BaseRepository

logger = logging.getLogger(__name__)


class CollaboratorRepository(BaseRepository[Collaborator]):
    """Repository for planner sharing grants."""

    collection = "collaborators"
    entity = "collaborator"
    model = Collaborator
    parent_field = "planner_id"

    async def get(self, planner_id: str, user_id: str) -> Optional[Collaborator]:
        return await self.get_fresh(Collaborator.document_id(planner_id, user_id))

    async def list_for_planner(self, planner_id: str) -> List[Collaborator]:
        with self.store_errors("list", planner_id):
            docs = await self.store.query(
                self.collection,
                [Filter("planner_id", "==", planner_id)],
                order_by="added_at",
            )
        return [Collaborator.from_document(doc) for doc in docs]

    async def list_for_user(self, user_id: str) -> List[Collaborator]:
        with self.store_errors("list", user_id):
            docs = await self.store.query(
                self.collection,
                [Filter("user_id", "==", user_id)],
                order_by="added_at",
            )
        return [Collaborator.from_document(doc) for doc in docs]

    async def add(self, planner_id: str, user_id: str, role: Role, added_by: str) -> Collaborator:
        collaborator = Collaborator(
            planner_id=planner_id,
            user_id=user_id,
            role=role,
            added_at=self.store.now(),
            added_by=added_by,
        )
        return await self.create(collaborator)

    async def update_role(self, planner_id: str, user_id: str, role: Role) -> Collaborator:
        return await self.update(
            Collaborator.document_id(planner_id, user_id),
            {"role": Role(role).value},
        )

    async def remove(self, planner_id: str, user_id: str) -> Collaborator:
        return await self.delete(Collaborator.document_id(planner_id, user_id))
