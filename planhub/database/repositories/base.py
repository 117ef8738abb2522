"""
Base hierarchy repository.

Combines the document store and the cache for one entity type. The
repository is the only writer of its entity's cache keys:

- reads consult the cache first and populate it on a miss;
- writes go to the store, then the invalidation cascade runs, then the
  single-entity key is refreshed from a re-read of the store.

Cache failures are logged by the cache client and never abort a store
mutation. Store failures are wrapped into StoreError here.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from ...cache.invalidation import CacheInvalidator
from ...cache.redis_client import CacheClient
from ...exceptions import ConflictError, NotFoundError, StoreError
from ...models.entities import Document, Page
from ...monitoring.metrics import version_conflicts_total
from ..exceptions import DatabaseError, DocumentNotFoundError, VersionMismatchError
from ..store import DocumentStore, Filter

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Document)


class BaseRepository(Generic[E]):
    """Store + cache access for one collection."""

    collection: str = ""
    entity: str = ""
    model: Type[Document] = Document
    parent_field: Optional[str] = None

    def __init__(
        self,
        store: DocumentStore,
        cache: CacheClient,
        invalidator: CacheInvalidator,
        item_ttl: int = 300,
        list_ttl: int = 300,
    ):
        self.store = store
        self.cache = cache
        self.invalidator = invalidator
        self.item_ttl = item_ttl
        self.list_ttl = list_ttl

    # ==================== KEYS ====================

    def item_key(self, entity_id: str) -> Optional[str]:
        return None

    def list_key(self, parent_id: str) -> Optional[str]:
        return None

    # ==================== ERROR BOUNDARY ====================

    @contextmanager
    def store_errors(self, operation: str, entity_id: Any = None):
        """Translate adapter errors into domain errors."""
        try:
            yield
        except VersionMismatchError as e:
            version_conflicts_total.labels(collection=self.collection).inc()
            logger.warning(f"Version conflict on {self.collection}/{entity_id}: {e}")
            raise ConflictError(
                f"{self.entity.capitalize()} was modified by another request",
                {"id": entity_id, "expected_version": e.expected},
            ) from None
        except DocumentNotFoundError:
            raise NotFoundError(self.entity, entity_id) from None
        except DatabaseError as e:
            logger.error(
                f"Store {operation} on {self.collection} failed for {entity_id}: {e}",
                exc_info=True,
            )
            raise StoreError(self.collection, operation) from None

    # ==================== HYDRATION ====================

    async def hydrate(self, doc: Dict[str, Any]) -> E:
        return self.model.from_document(doc)

    def from_cache(self, data: Dict[str, Any]) -> E:
        return self.model.model_validate(data)

    async def _cache_entity(self, entity: E):
        key = self.item_key(entity.id)
        if key:
            await self.cache.set(key, entity.to_cache(), ttl=self.item_ttl)

    # ==================== READS ====================

    async def get(self, entity_id: str) -> Optional[E]:
        """Get by id, cache first."""
        key = self.item_key(entity_id)
        if key:
            cached = await self.cache.get(key)
            if cached is not None:
                return self.from_cache(cached)

        entity = await self.get_fresh(entity_id)
        if entity is not None:
            await self._cache_entity(entity)
        return entity

    async def get_fresh(self, entity_id: str) -> Optional[E]:
        """Get by id straight from the store, bypassing the cache."""
        with self.store_errors("get", entity_id):
            doc = await self.store.get(self.collection, entity_id)
        if doc is None:
            return None
        return await self.hydrate(doc)

    async def require(self, entity_id: str) -> E:
        entity = await self.get(entity_id)
        if entity is None:
            raise NotFoundError(self.entity, entity_id)
        return entity

    async def list_by_parent(self, parent_id: str) -> List[E]:
        """Children of a parent ordered by ``order`` ascending, cache first."""
        key = self.list_key(parent_id)
        if key:
            cached = await self.cache.get(key)
            if cached is not None:
                return [self.from_cache(item) for item in cached]

        with self.store_errors("list", parent_id):
            docs = await self.store.query(
                self.collection,
                [Filter(self.parent_field, "==", parent_id)],
                order_by="order",
            )
        entities = [await self.hydrate(doc) for doc in docs]

        if key:
            await self.cache.set(key, [e.to_cache() for e in entities], ttl=self.list_ttl)
        return entities

    async def find_by_ids(self, ids: Sequence[str]) -> List[E]:
        """Fetch several entities from the store; missing ids are skipped."""
        with self.store_errors("find_by_ids"):
            docs = await self.store.get_many(self.collection, list(ids))
        return [await self.hydrate(doc) for doc in docs]

    async def find(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = "order",
        descending: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """Filtered, sorted, paged listing straight from the store."""
        with self.store_errors("find"):
            docs = await self.store.query(
                self.collection,
                list(filters),
                order_by=order_by,
                descending=descending,
                limit=limit,
                offset=offset,
            )
            total = await self.store.count(self.collection, list(filters))

        items = [await self.hydrate(doc) for doc in docs]
        return Page(
            items=items,
            total=total,
            page=(offset // limit) + 1 if limit else 1,
            limit=limit,
            has_next=offset + len(items) < total,
            has_prev=offset > 0,
        )

    async def count(self, filters: Sequence[Filter] = ()) -> int:
        with self.store_errors("count"):
            return await self.store.count(self.collection, list(filters))

    async def max_order(self, parent_id: str) -> int:
        """Highest ``order`` under a parent, -1 when it has no children."""
        with self.store_errors("max_order", parent_id):
            docs = await self.store.query(
                self.collection,
                [Filter(self.parent_field, "==", parent_id)],
                order_by="order",
                descending=True,
                limit=1,
            )
        return docs[0]["order"] if docs else -1

    # ==================== WRITES ====================

    async def create(self, entity: E) -> E:
        """Write through, invalidate the parent's views, cache the new entity."""
        with self.store_errors("create", entity.id):
            doc = await self.store.set(self.collection, entity.id, entity.to_document())

        created = await self.hydrate(doc)
        await self.invalidator.invalidate(self.entity, created)
        await self._cache_entity(created)

        logger.info(f"Created {self.entity} {created.id}")
        return created

    async def update(
        self,
        entity_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> E:
        """
        Merge fields, re-read, invalidate and refresh the cache.

        Raises:
            NotFoundError: entity missing (including deleted concurrently)
            ConflictError: expected_version given and stale
        """
        before = None
        if self.parent_field and self.parent_field in fields:
            before = await self.get_fresh(entity_id)

        with self.store_errors("update", entity_id):
            await self.store.update(self.collection, entity_id, fields, expected_version)

        updated = await self.get_fresh(entity_id)
        if updated is None:
            raise NotFoundError(self.entity, entity_id)

        if before is not None and getattr(before, self.parent_field) != getattr(updated, self.parent_field):
            await self.invalidator.invalidate(self.entity, before)
        await self.invalidator.invalidate(self.entity, updated)
        await self._cache_entity(updated)

        logger.debug(f"Updated {self.entity} {entity_id} to version {updated.version}")
        return updated

    async def delete(self, entity_id: str) -> E:
        """Read, delete, invalidate. Returns the deleted entity."""
        entity = await self.get_fresh(entity_id)
        if entity is None:
            raise NotFoundError(self.entity, entity_id)

        with self.store_errors("delete", entity_id):
            await self.store.delete(self.collection, entity_id)

        await self.invalidator.invalidate(self.entity, entity, deleted=True)
        logger.info(f"Deleted {self.entity} {entity_id}")
        return entity

