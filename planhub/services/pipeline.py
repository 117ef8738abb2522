"""
Mutation pipeline.

Every mutating entry point runs the same ordered steps:

    validate -> authorize -> quota_check -> persist -> cache_update -> invalidate -> audit

A service supplies the steps it needs as coroutines taking the shared
MutationContext; steps it omits are skipped. Any step before persist may
raise to abort with nothing written. Audit runs last and never fails the
mutation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from ..exceptions import ValidationError
from ..models.entities import Planner
from .access import Capabilities
from .audit import AuditAction, AuditSink, log_audit_event

logger = logging.getLogger(__name__)

STEPS = ("validate", "authorize", "quota_check", "persist", "cache_update", "invalidate")


@dataclass
class MutationContext:
    """State shared by the steps of one mutation."""
    operation: str
    user_id: str
    entity_type: str
    entity_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    planner: Optional[Planner] = None
    capabilities: Optional[Capabilities] = None
    state: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    audit_action: Optional[AuditAction] = None
    audit_details: Dict[str, Any] = field(default_factory=dict)


Step = Callable[[MutationContext], Awaitable[None]]


class MutationPipeline:
    """Runs named steps in canonical order, then audits."""

    def __init__(self, audit: AuditSink):
        self.audit = audit

    async def run(self, ctx: MutationContext, **steps: Optional[Step]) -> Any:
        unknown = set(steps) - set(STEPS)
        if unknown:
            raise ValueError(f"Unknown pipeline steps: {', '.join(sorted(unknown))}")
        if steps.get("persist") is None:
            raise ValueError(f"{ctx.operation} has no persist step")

        for name in STEPS:
            step = steps.get(name)
            if step is None:
                continue
            logger.debug(f"{ctx.operation} [{name}] user={ctx.user_id} id={ctx.entity_id}")
            await step(ctx)

        if ctx.audit_action is not None:
            await log_audit_event(
                self.audit,
                ctx.audit_action,
                user_id=ctx.user_id,
                entity_type=ctx.entity_type,
                entity_id=ctx.entity_id,
                details=ctx.audit_details,
            )

        return ctx.result


# ==================== VALIDATION HELPERS ====================

M = TypeVar("M", bound=BaseModel)


def pick_fields(payload: Dict[str, Any], allowed: Iterable[str], entity: str) -> Dict[str, Any]:
    """Keep the writable fields of a payload; any other field is rejected."""
    allowed = set(allowed)
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(
            f"Fields not writable on {entity}: {', '.join(unknown)}",
            {"fields": unknown},
        )
    return dict(payload)


def build_model(model: Type[M], data: Dict[str, Any]) -> M:
    """Validate data into a model, reporting failures as ValidationError."""
    try:
        return model.model_validate(data)
    except ModelValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__.lower()} data", {"errors": errors}) from None
