"""Domain models."""

from .entities import (
    new_id,
    Role,
    SectionType,
    SectionVisibility,
    ActivityType,
    ActivityStatus,
    ActivityPriority,
    OPEN_STATUSES,
    Document,
    PlannerSettings,
    PlannerMetadata,
    Collaborator,
    Planner,
    SectionSettings,
    SectionMetadata,
    Section,
    DEFAULT_SECTIONS,
    ActivityMetadata,
    Activity,
    TimeEntry,
    ScopeStatistics,
    PlannerStatistics,
    Page,
    PlannerDetails,
)

__all__ = [
    "new_id",
    "Role",
    "SectionType",
    "SectionVisibility",
    "ActivityType",
    "ActivityStatus",
    "ActivityPriority",
    "OPEN_STATUSES",
    "Document",
    "PlannerSettings",
    "PlannerMetadata",
    "Collaborator",
    "Planner",
    "SectionSettings",
    "SectionMetadata",
    "Section",
    "DEFAULT_SECTIONS",
    "ActivityMetadata",
    "Activity",
    "TimeEntry",
    "ScopeStatistics",
    "PlannerStatistics",
    "Page",
    "PlannerDetails",
]
