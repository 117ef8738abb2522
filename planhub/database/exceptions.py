"""Custom exceptions for store adapter operations."""


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Database connection failed."""
    pass


class DatabaseConstraintError(DatabaseError):
    """Database constraint violation (duplicate, foreign key, etc)."""
    pass


class DatabaseOperationError(DatabaseError):
    """General database operation failed."""
    pass


class DocumentNotFoundError(DatabaseError):
    """Document targeted by an update or batch operation does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


class VersionMismatchError(DatabaseError):
    """Compare-and-swap on the version field failed."""

    def __init__(self, collection: str, doc_id: str, expected: int):
        super().__init__(f"{collection}/{doc_id} is no longer at version {expected}")
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
