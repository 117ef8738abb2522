"""
Domain error taxonomy.

Each error maps to a distinct client-facing code. Store failures are
always reported through StoreError, which never exposes driver details.
"""

from typing import Any, Dict, Optional


class PlanHubError(Exception):
    """Base exception for all core errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}

    def public_message(self) -> str:
        """Message safe to show to a client."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.public_message(),
                "details": self.details,
            }
        }


class NotFoundError(PlanHubError):
    """Entity or parent entity missing."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{entity.capitalize()} not found", details)
        self.entity = entity
        self.entity_id = entity_id


class ForbiddenError(PlanHubError):
    """Resolved capability does not allow the requested operation."""

    status_code = 403
    error_code = "FORBIDDEN"


class ValidationError(PlanHubError):
    """Request is well-formed but violates a referential or structural rule."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class QuotaExceededError(PlanHubError):
    """Plan ceiling reached for a create operation."""

    status_code = 403
    error_code = "QUOTA_EXCEEDED"

    def __init__(self, resource: str, limit: int, plan: str):
        super().__init__(
            f"Plan limit reached for {resource} ({plan}: {limit})",
            {"resource": resource, "limit": limit, "plan": plan},
        )
        self.resource = resource
        self.limit = limit
        self.plan = plan


class ConflictError(PlanHubError):
    """Optimistic concurrency check failed; caller may re-read and retry."""

    status_code = 409
    error_code = "CONFLICT"


class StoreError(PlanHubError):
    """Document store failure, wrapped at the repository boundary."""

    status_code = 503
    error_code = "STORE_ERROR"

    def __init__(self, collection: str, operation: str, message: str = ""):
        super().__init__(
            message or f"Store operation {operation} on {collection} failed",
            {"collection": collection, "operation": operation},
        )
        self.collection = collection
        self.operation = operation

    def public_message(self) -> str:
        return "Temporary storage failure, please try again"

    def to_dict(self) -> Dict[str, Any]:
        # Diagnostics stay in the logs
        return {"error": {"code": self.error_code, "message": self.public_message(), "details": {}}}
