"""Time entry repository. Entries are not cached."""

import logging
from typing import List, Optional

from ...models.entities import TimeEntry
from ..store import Filter
from .base import BaseRepository

logger = logging.getLogger(__name__)


class TimeEntryRepository(BaseRepository[TimeEntry]):
    """Repository for time tracking entries."""

    collection = "time_entries"
    entity = "time_entry"
    model = TimeEntry
    parent_field = "activity_id"

    async def get_active(self, user_id: str) -> Optional[TimeEntry]:
        """The user's running entry, if any."""
        with self.store_errors("get_active", user_id):
            docs = await self.store.query(
                self.collection,
                [Filter("user_id", "==", user_id), Filter("end_time", "==", None)],
                order_by="start_time",
                descending=True,
                limit=1,
            )
        return TimeEntry.from_document(docs[0]) if docs else None

    async def list_for_user(self, user_id: str, limit: int = 100, offset: int = 0) -> List[TimeEntry]:
        with self.store_errors("list", user_id):
            docs = await self.store.query(
                self.collection,
                [Filter("user_id", "==", user_id)],
                order_by="start_time",
                descending=True,
                limit=limit,
                offset=offset,
            )
        return [TimeEntry.from_document(doc) for doc in docs]

    async def list_for_activity(self, activity_id: str) -> List[TimeEntry]:
        with self.store_errors("list", activity_id):
            docs = await self.store.query(
                self.collection,
                [Filter("activity_id", "==", activity_id)],
                order_by="start_time",
            )
        return [TimeEntry.from_document(doc) for doc in docs]
