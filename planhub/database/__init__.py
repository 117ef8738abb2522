"""
Document store layer.

SQLAlchemy tables behind a small document-collection adapter, plus the
hierarchy repositories that combine the store with the cache.
"""

from .connection import Database, normalize_database_url
from .store import DocumentStore, Filter, BatchOp
from .exceptions import (
    DatabaseError,
    DatabaseConnectionError,
    DatabaseConstraintError,
    DatabaseOperationError,
    DocumentNotFoundError,
    VersionMismatchError,
)

__all__ = [
    "Database",
    "normalize_database_url",
    "DocumentStore",
    "Filter",
    "BatchOp",
    "DatabaseError",
    "DatabaseConnectionError",
    "DatabaseConstraintError",
    "DatabaseOperationError",
    "DocumentNotFoundError",
    "VersionMismatchError",
]
