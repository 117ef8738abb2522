"""
Entity store adapter.

A thin document-collection interface over the SQLAlchemy tables: per
collection get/query/count/set/update/delete plus an all-or-nothing batch
write. Documents are plain dicts keyed by column name. The adapter holds
no business rules; it assigns server timestamps, maintains the monotonic
``version`` field and offers compare-and-swap on it.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic_core import to_jsonable_python
from sqlalchemy import JSON, delete, func, inspect, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..monitoring.metrics import track_store_operation
from ..utils.datetime_utils import get_local_now, to_naive_local
from .connection import Database
from .exceptions import (
    DatabaseConnectionError,
    DatabaseConstraintError,
    DatabaseError,
    DatabaseOperationError,
    DocumentNotFoundError,
    VersionMismatchError,
)
from .models import COLLECTIONS

logger = logging.getLogger(__name__)

SQL_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "not-in")
ARRAY_OPERATORS = ("array-contains", "array-contains-any")
PROTECTED_FIELDS = ("id", "created_at", "version")


@dataclass(frozen=True)
class Filter:
    """A single field predicate: ``Filter("status", "==", "pending")``."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in SQL_OPERATORS + ARRAY_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: Dict[str, Any]) -> bool:
        """Evaluate an array operator against an already loaded document."""
        values = doc.get(self.field) or []
        if self.op == "array-contains":
            return self.value in values
        if self.op == "array-contains-any":
            return any(v in values for v in self.value)
        raise ValueError(f"{self.op} is evaluated in SQL")


@dataclass
class BatchOp:
    """One write inside an atomic batch. type is set, update or delete."""
    type: str
    collection: str
    id: str
    doc: Optional[Dict[str, Any]] = None
    expected_version: Optional[int] = None


@dataclass
class _Collection:
    model: Any
    fields: List[Tuple[str, str]] = field(default_factory=list)  # (document key, attribute)
    json_fields: set = field(default_factory=set)

    @property
    def attributes(self) -> Dict[str, str]:
        return dict(self.fields)


class DocumentStore:
    """Document collection facade over a Database."""

    def __init__(self, database: Database, timezone: str = "UTC"):
        self.database = database
        self.timezone = timezone
        self._collections: Dict[str, _Collection] = {}

        for name, model in COLLECTIONS.items():
            info = _Collection(model=model)
            for prop in inspect(model).column_attrs:
                column = prop.columns[0]
                info.fields.append((column.name, prop.key))
                if isinstance(column.type, JSON):
                    info.json_fields.add(column.name)
            self._collections[name] = info

    # ==================== HELPERS ====================

    def _collection(self, name: str) -> _Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise DatabaseOperationError(f"Unknown collection: {name}")

    def now(self) -> datetime:
        """Current naive local time in the store's timezone."""
        return get_local_now(self.timezone)

    def _to_document(self, info: _Collection, row: Any) -> Dict[str, Any]:
        return {key: getattr(row, attr) for key, attr in info.fields}

    def _to_values(self, info: _Collection, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Map document keys to model attributes, normalizing values."""
        attributes = info.attributes
        values = {}
        for key, value in doc.items():
            attr = attributes.get(key)
            if attr is None:
                logger.debug(f"Ignoring unknown field {key} for {info.model.__tablename__}")
                continue
            if key in info.json_fields and value is not None:
                value = to_jsonable_python(value)
            elif isinstance(value, datetime):
                value = to_naive_local(value, self.timezone)
            values[attr] = value
        return values

    def _column(self, info: _Collection, field_name: str):
        attr = info.attributes.get(field_name)
        if attr is None:
            raise DatabaseOperationError(
                f"Unknown field {field_name} on {info.model.__tablename__}"
            )
        return getattr(info.model, attr)

    def _where(self, info: _Collection, filters: Iterable[Filter]) -> List[Any]:
        clauses = []
        for f in filters:
            if f.op in ARRAY_OPERATORS:
                continue
            column = self._column(info, f.field)
            value = f.value
            if isinstance(value, datetime):
                value = to_naive_local(value, self.timezone)

            if f.op == "==":
                clauses.append(column.is_(None) if value is None else column == value)
            elif f.op == "!=":
                clauses.append(column.is_not(None) if value is None else column != value)
            elif f.op == "<":
                clauses.append(column < value)
            elif f.op == "<=":
                clauses.append(column <= value)
            elif f.op == ">":
                clauses.append(column > value)
            elif f.op == ">=":
                clauses.append(column >= value)
            elif f.op == "in":
                clauses.append(column.in_(list(value)))
            elif f.op == "not-in":
                clauses.append(column.not_in(list(value)))
        return clauses

    @asynccontextmanager
    async def _session(self, collection: str, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Open a transaction and translate driver errors into adapter errors."""
        try:
            async with self.database.session() as session:
                yield session
            track_store_operation(collection, operation, ok=True)
        except DatabaseError:
            track_store_operation(collection, operation, ok=False)
            raise
        except IntegrityError as e:
            track_store_operation(collection, operation, ok=False)
            raise DatabaseConstraintError(f"{operation} on {collection} violated a constraint: {e}") from e
        except (OperationalError, ConnectionError, OSError) as e:
            track_store_operation(collection, operation, ok=False)
            raise DatabaseConnectionError(f"{operation} on {collection} failed: {e}") from e
        except (SQLAlchemyError, RuntimeError) as e:
            track_store_operation(collection, operation, ok=False)
            raise DatabaseOperationError(f"{operation} on {collection} failed: {e}") from e

    # ==================== READS ====================

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one document by id, or None."""
        info = self._collection(collection)
        async with self._session(collection, "get") as session:
            row = await session.get(info.model, doc_id)
            return self._to_document(info, row) if row is not None else None

    async def get_many(self, collection: str, doc_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch documents by id, preserving the requested order and skipping missing ids."""
        if not doc_ids:
            return []
        info = self._collection(collection)
        async with self._session(collection, "get_many") as session:
            result = await session.execute(
                select(info.model).where(info.model.id.in_(list(doc_ids)))
            )
            found = {row.id: self._to_document(info, row) for row in result.scalars().all()}
        return [found[doc_id] for doc_id in doc_ids if doc_id in found]

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Query a collection.

        Array operators are evaluated after loading, so when one is present
        paging is applied in memory.
        """
        info = self._collection(collection)
        post_filters = [f for f in filters if f.op in ARRAY_OPERATORS]

        stmt = select(info.model)
        clauses = self._where(info, filters)
        if clauses:
            stmt = stmt.where(*clauses)
        if order_by:
            column = self._column(info, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        stmt = stmt.order_by(info.model.id.asc())

        if not post_filters:
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)

        async with self._session(collection, "query") as session:
            result = await session.execute(stmt)
            docs = [self._to_document(info, row) for row in result.scalars().all()]

        if post_filters:
            docs = [d for d in docs if all(f.matches(d) for f in post_filters)]
            end = offset + limit if limit is not None else None
            docs = docs[offset:end]

        return docs

    async def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        """Count matching documents."""
        if any(f.op in ARRAY_OPERATORS for f in filters):
            return len(await self.query(collection, filters))

        info = self._collection(collection)
        stmt = select(func.count()).select_from(info.model)
        clauses = self._where(info, filters)
        if clauses:
            stmt = stmt.where(*clauses)

        async with self._session(collection, "count") as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    # ==================== WRITES ====================

    async def _set(self, session: AsyncSession, info: _Collection, doc_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        now = self.now()
        values = self._to_values(info, doc)
        for attr in ("id", "version", "updated_at"):
            values.pop(attr, None)

        row = await session.get(info.model, doc_id)
        if row is None:
            if values.get("created_at") is None:
                values["created_at"] = now
            row = info.model(id=doc_id, updated_at=now, version=1, **values)
            session.add(row)
        else:
            values.pop("created_at", None)
            for attr, value in values.items():
                setattr(row, attr, value)
            row.updated_at = now
            row.version = row.version + 1
        await session.flush()
        return self._to_document(info, row)

    async def _update(
        self,
        session: AsyncSession,
        info: _Collection,
        doc_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int],
    ) -> None:
        collection = info.model.__tablename__
        values = self._to_values(
            info, {k: v for k, v in partial.items() if k not in PROTECTED_FIELDS}
        )
        values["updated_at"] = self.now()
        values["version"] = info.model.version + 1

        stmt = update(info.model).where(info.model.id == doc_id)
        if expected_version is not None:
            stmt = stmt.where(info.model.version == expected_version)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await session.execute(stmt)
        if result.rowcount:
            return

        exists = await session.execute(select(info.model.id).where(info.model.id == doc_id))
        if exists.scalar() is None:
            raise DocumentNotFoundError(collection, doc_id)
        raise VersionMismatchError(collection, doc_id, expected_version)

    async def _delete(self, session: AsyncSession, info: _Collection, doc_id: str) -> bool:
        result = await session.execute(
            delete(info.model)
            .where(info.model.id == doc_id)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def set(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace a document; returns the stored document."""
        info = self._collection(collection)
        async with self._session(collection, "set") as session:
            return await self._set(session, info, doc_id, doc)

    async def update(
        self,
        collection: str,
        doc_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> None:
        """
        Merge fields into an existing document and bump its version.

        Raises:
            DocumentNotFoundError: no document with that id
            VersionMismatchError: expected_version given and stale
        """
        info = self._collection(collection)
        async with self._session(collection, "update") as session:
            await self._update(session, info, doc_id, partial, expected_version)

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Deleting a missing document is a no-op."""
        info = self._collection(collection)
        async with self._session(collection, "delete") as session:
            return await self._delete(session, info, doc_id)

    async def atomic_batch(self, ops: Sequence[BatchOp]) -> int:
        """
        Apply every op in one transaction, all-or-nothing.

        Returns:
            Number of ops applied
        """
        if not ops:
            return 0

        for op in ops:
            if op.type not in ("set", "update", "delete"):
                raise DatabaseOperationError(f"Unsupported batch op type: {op.type}")
            self._collection(op.collection)

        label = ",".join(sorted({op.collection for op in ops}))
        async with self._session(label, "atomic_batch") as session:
            for op in ops:
                info = self._collection(op.collection)
                if op.type == "set":
                    await self._set(session, info, op.id, op.doc or {})
                elif op.type == "update":
                    await self._update(session, info, op.id, op.doc or {}, op.expected_version)
                else:
                    await self._delete(session, info, op.id)

        logger.debug(f"Atomic batch applied {len(ops)} ops on {label}")
        return len(ops)
