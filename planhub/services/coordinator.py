"""
Bulk and reorder coordination.

Every bulk mutation is one atomic store batch followed by one cache
invalidation per distinct parent scope. Calls touching the same parent
are serialized with a per-scope asyncio lock so two reorders of one
section (or planner) cannot interleave between validation and write.

If the batch fails nothing is invalidated; if invalidation fails after a
successful batch the mutation still succeeds and entries expire by TTL.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..cache.invalidation import CacheInvalidator
from ..database.store import BatchOp, DocumentStore, Filter
from ..exceptions import ValidationError
from ..database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Fields a bulk update may never change
IMMUTABLE_FIELDS = {
    "activity": {"id", "section_id", "planner_id", "created_at", "created_by", "version", "updated_at"},
    "section": {"id", "planner_id", "created_at", "created_by", "version", "updated_at"},
}

# Descendants deleted with an entity, as (collection, foreign key, entity type)
CHILD_COLLECTIONS = {
    "activity": (),
    "section": (("activities", "section_id", "activity"),),
}

BeforeWrite = Callable[[List[Dict[str, Any]]], Awaitable[None]]
PerDocument = Callable[[Dict[str, Any]], Dict[str, Any]]


class ScopeLocks:
    """Per-scope asyncio locks, dropped once nobody holds or awaits them."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *scopes: str):
        """Acquire several scopes in sorted order."""
        locks = [self.lock(scope) for scope in sorted(set(scopes))]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class BulkResult:
    """Result of a bulk or reorder operation."""

    def __init__(self, entity: str, operation: str):
        self.entity = entity
        self.operation = operation
        self.succeeded: List[str] = []
        self.skipped: List[Dict[str, str]] = []
        self.parents: List[str] = []
        self.planner_ids: List[str] = []
        self.documents: List[Dict[str, Any]] = []
        self.start_time = datetime.utcnow()
        self.end_time: Optional[datetime] = None

    def add_success(self, item_id: str):
        self.succeeded.append(item_id)

    def add_skip(self, item_id: str, reason: str):
        self.skipped.append({"id": item_id, "reason": reason})

    def finalize(self):
        self.end_time = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "operation": self.operation,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "success_count": len(self.succeeded),
            "skip_count": len(self.skipped),
            "scopes": self.parents,
            "duration_seconds": (self.end_time - self.start_time).total_seconds() if self.end_time else 0,
        }


class BulkCoordinator:
    """Atomic multi-document writes with grouped invalidation."""

    def __init__(
        self,
        store: DocumentStore,
        repositories: Dict[str, BaseRepository],
        invalidator: CacheInvalidator,
        locks: ScopeLocks,
        max_batch_size: int = 500,
    ):
        self.store = store
        self.repositories = repositories
        self.invalidator = invalidator
        self.locks = locks
        self.max_batch_size = max_batch_size

    def _repo(self, entity: str) -> BaseRepository:
        if entity not in self.repositories:
            raise ValidationError(f"Bulk operations are not supported for {entity}")
        return self.repositories[entity]

    def scope(self, entity: str, parent_id: str) -> str:
        """Lock name of the child scope of a parent."""
        return f"{entity}-scope:{parent_id}"

    def _check_size(self, count: int):
        if count == 0:
            raise ValidationError("No items given")
        if count > self.max_batch_size:
            raise ValidationError(
                f"Too many items in one batch ({count} > {self.max_batch_size})"
            )

    async def _load(self, repo: BaseRepository, ids: Sequence[str]) -> List[Dict[str, Any]]:
        with repo.store_errors("bulk_load"):
            return await self.store.get_many(repo.collection, list(ids))

    async def _write(self, repo: BaseRepository, ops: List[BatchOp]):
        with repo.store_errors("atomic_batch"):
            await self.store.atomic_batch(ops)

    def _finish(self, result: BulkResult, repo: BaseRepository, docs: List[Dict[str, Any]]):
        result.documents = docs
        result.parents = list(dict.fromkeys(d[repo.parent_field] for d in docs))
        result.planner_ids = list(dict.fromkeys(d["planner_id"] for d in docs))
        for doc in docs:
            result.add_success(doc["id"])
        result.finalize()

    # ==================== REORDER ====================

    async def reorder(self, entity: str, parent_id: str, items: Sequence[Dict[str, Any]]) -> BulkResult:
        """
        Set ``order`` on children of one parent in a single batch.

        Raises:
            ValidationError: duplicate ids or orders, ids that do not exist
                or belong to another parent, or an order colliding with a
                sibling left out of the list
        """
        repo = self._repo(entity)
        self._check_size(len(items))

        orders: Dict[str, int] = {}
        for item in items:
            item_id, order = item.get("id"), item.get("order")
            if not item_id or not isinstance(order, int) or isinstance(order, bool) or order < 0:
                raise ValidationError("Each item needs an id and a non-negative integer order")
            if item_id in orders:
                raise ValidationError(f"Duplicate id in reorder: {item_id}")
            orders[item_id] = order
        if len(set(orders.values())) != len(orders):
            raise ValidationError("Duplicate order values in reorder")

        result = BulkResult(entity, "reorder")
        async with self.locks.hold(self.scope(entity, parent_id)):
            with repo.store_errors("reorder", parent_id):
                siblings = await self.store.query(
                    repo.collection, [Filter(repo.parent_field, "==", parent_id)]
                )
            by_id = {doc["id"]: doc for doc in siblings}

            unknown = [item_id for item_id in orders if item_id not in by_id]
            if unknown:
                raise ValidationError(
                    f"Items do not belong to {parent_id}: {', '.join(unknown)}",
                    {"ids": unknown, "parent_id": parent_id},
                )

            final = {doc_id: orders.get(doc_id, doc["order"]) for doc_id, doc in by_id.items()}
            if len(set(final.values())) != len(final):
                raise ValidationError("Reorder would give two items the same order")

            ops = [
                BatchOp("update", repo.collection, doc_id, {"order": order})
                for doc_id, order in orders.items()
            ]
            await self._write(repo, ops)

            docs = [dict(by_id[doc_id], order=order) for doc_id, order in orders.items()]
            await self.invalidator.invalidate_scopes(entity, docs)

        self._finish(result, repo, docs)
        logger.info(f"Reordered {len(docs)} {entity} items under {parent_id}")
        return result

    # ==================== BULK UPDATE ====================

    async def bulk_update(
        self,
        entity: str,
        ids: Sequence[str],
        fields: Dict[str, Any],
        per_document: Optional[PerDocument] = None,
    ) -> BulkResult:
        """
        Apply the same fields to many entities atomically. Missing ids are
        skipped and reported.

        Args:
            per_document: Optional function of each loaded document returning
                fields that depend on its current state (merged settings,
                completion timestamps); they override ``fields``
        """
        repo = self._repo(entity)
        ids = list(dict.fromkeys(ids))
        self._check_size(len(ids))

        forbidden = set(fields) & IMMUTABLE_FIELDS.get(entity, set())
        if forbidden:
            raise ValidationError(
                f"Bulk update cannot change {', '.join(sorted(forbidden))}",
                {"fields": sorted(forbidden)},
            )
        if not fields:
            raise ValidationError("No fields to update")

        result = BulkResult(entity, "bulk_update")
        preview = await self._load(repo, ids)
        scopes = [self.scope(entity, d[repo.parent_field]) for d in preview]

        async with self.locks.hold(*scopes):
            docs = await self._load(repo, ids)
            found = {d["id"] for d in docs}
            for missing in (i for i in ids if i not in found):
                result.add_skip(missing, "not found")

            if docs:
                ops = []
                for doc in docs:
                    changes = dict(fields)
                    if per_document is not None:
                        changes.update(per_document(doc))
                    ops.append(BatchOp("update", repo.collection, doc["id"], changes))
                await self._write(repo, ops)
                await self.invalidator.invalidate_scopes(entity, docs)

        self._finish(result, repo, docs)
        logger.info(f"Bulk updated {len(docs)} {entity} items across {len(result.parents)} scopes")
        return result

    # ==================== BULK DELETE ====================

    async def bulk_delete(
        self,
        entity: str,
        ids: Sequence[str],
        before_write: Optional[BeforeWrite] = None,
    ) -> BulkResult:
        """
        Delete many entities (and their descendants) atomically.

        Args:
            before_write: Optional check run under the scope locks with the
                loaded documents; raise to abort without writing
        """
        repo = self._repo(entity)
        ids = list(dict.fromkeys(ids))
        self._check_size(len(ids))

        result = BulkResult(entity, "bulk_delete")
        preview = await self._load(repo, ids)
        scopes = [self.scope(entity, d[repo.parent_field]) for d in preview]
        # Children's own scopes too, so nothing is created under a parent being deleted
        scopes += [
            self.scope(child_entity, d["id"])
            for _, _, child_entity in CHILD_COLLECTIONS.get(entity, ())
            for d in preview
        ]

        async with self.locks.hold(*scopes):
            docs = await self._load(repo, ids)
            found = {d["id"] for d in docs}
            for missing in (i for i in ids if i not in found):
                result.add_skip(missing, "not found")

            if docs and before_write is not None:
                await before_write(docs)

            if docs:
                children: Dict[str, List[Dict[str, Any]]] = {}
                ops: List[BatchOp] = []
                activity_ids = [d["id"] for d in docs] if entity == "activity" else []

                with repo.store_errors("bulk_delete"):
                    for collection, foreign_key, child_entity in CHILD_COLLECTIONS.get(entity, ()):
                        child_docs = await self.store.query(
                            collection, [Filter(foreign_key, "in", [d["id"] for d in docs])]
                        )
                        children[child_entity] = child_docs
                        activity_ids += [c["id"] for c in child_docs]
                        ops += [BatchOp("delete", collection, c["id"]) for c in child_docs]

                    if activity_ids:
                        entries = await self.store.query(
                            "time_entries", [Filter("activity_id", "in", activity_ids)]
                        )
                        ops = [BatchOp("delete", "time_entries", e["id"]) for e in entries] + ops

                ops += [BatchOp("delete", repo.collection, d["id"]) for d in docs]
                await self._write(repo, ops)
                await self.invalidator.invalidate_scopes(entity, docs, deleted=True, children=children)

        self._finish(result, repo, docs)
        logger.info(f"Bulk deleted {len(docs)} {entity} items across {len(result.parents)} scopes")
        return result
