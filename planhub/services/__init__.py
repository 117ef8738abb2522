"""
Core services.

The caller-facing planner, section, activity and time tracking services,
and the components they share: access resolution, quotas, statistics,
bulk coordination, the mutation pipeline and the audit sink.
"""

from .access import AccessControlResolver, Capabilities, capabilities_for
from .audit import AuditAction, AuditSink, LoggingAuditSink, MemoryAuditSink, log_audit_event
from .coordinator import BulkCoordinator, BulkResult, ScopeLocks
from .pipeline import MutationContext, MutationPipeline
from .quota import PlanLookup, QuotaEnforcer
from .statistics import RollupUpdater, StatisticsAggregator, compute_statistics
from .planners import PlannerService
from .sections import SectionService
from .activities import ActivityService
from .time_tracking import TimeTrackingService

__all__ = [
    "AccessControlResolver",
    "Capabilities",
    "capabilities_for",
    "AuditAction",
    "AuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "log_audit_event",
    "BulkCoordinator",
    "BulkResult",
    "ScopeLocks",
    "MutationContext",
    "MutationPipeline",
    "PlanLookup",
    "QuotaEnforcer",
    "RollupUpdater",
    "StatisticsAggregator",
    "compute_statistics",
    "PlannerService",
    "SectionService",
    "ActivityService",
    "TimeTrackingService",
]
