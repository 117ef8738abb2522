"""
Audit sink.

Audit-log persistence is external; the core hands every completed
mutation to an AuditSink. The default sink writes to the system log.
A failing sink never fails the operation that was audited.
"""

import logging
from typing import Any, Dict, List, Optional
from enum import Enum

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Types of auditable actions."""
    # Planners
    PLANNER_CREATE = "planner_create"
    PLANNER_UPDATE = "planner_update"
    PLANNER_DELETE = "planner_delete"
    PLANNER_ARCHIVE = "planner_archive"
    PLANNER_UNARCHIVE = "planner_unarchive"
    PLANNER_DUPLICATE = "planner_duplicate"

    # Sharing
    COLLABORATOR_ADD = "collaborator_add"
    COLLABORATOR_UPDATE = "collaborator_update"
    COLLABORATOR_REMOVE = "collaborator_remove"

    # Sections
    SECTION_CREATE = "section_create"
    SECTION_UPDATE = "section_update"
    SECTION_DELETE = "section_delete"
    SECTION_REORDER = "section_reorder"
    SECTION_BULK_UPDATE = "section_bulk_update"
    SECTION_BULK_DELETE = "section_bulk_delete"

    # Activities
    ACTIVITY_CREATE = "activity_create"
    ACTIVITY_UPDATE = "activity_update"
    ACTIVITY_MOVE = "activity_move"
    ACTIVITY_DELETE = "activity_delete"
    ACTIVITY_REORDER = "activity_reorder"
    ACTIVITY_BULK_UPDATE = "activity_bulk_update"
    ACTIVITY_BULK_DELETE = "activity_bulk_delete"

    # Time tracking
    TIME_START = "time_start"
    TIME_STOP = "time_stop"


class AuditLevel(str, Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditSink:
    """Interface of the external audit log."""

    async def record(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> bool:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    """Writes audit events to the system log."""

    async def record(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> bool:
        log_message = f"AUDIT: {AuditAction(action).value} by {user_id or 'system'}"
        if entity_type and entity_id:
            log_message += f" on {entity_type}:{entity_id}"

        if level == AuditLevel.CRITICAL:
            logger.critical(log_message, extra={"audit": True, "details": details})
        elif level == AuditLevel.WARNING:
            logger.warning(log_message, extra={"audit": True, "details": details})
        else:
            logger.info(log_message, extra={"audit": True, "details": details})
        return True


class MemoryAuditSink(AuditSink):
    """Keeps events in memory; useful for embedding and inspection."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def record(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> bool:
        self.events.append({
            "action": AuditAction(action).value,
            "user_id": user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
            "level": AuditLevel(level).value,
        })
        return True


async def log_audit_event(sink: AuditSink, action: AuditAction, **kwargs) -> bool:
    """Record an event, never raising."""
    try:
        return await sink.record(action, **kwargs)
    except Exception as e:
        logger.error(f"Failed to log audit event {action}: {e}")
        return False
