"""Domain models for the Planner → Section → Activity hierarchy."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Generic, List, Optional, TypeVar
import uuid

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    """Generate a document id."""
    return uuid.uuid4().hex


class Role(str, Enum):
    """Collaborator roles. The owner is implicit and never stored."""
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"


class SectionType(str, Enum):
    TASKS = "tasks"
    NOTES = "notes"
    GOALS = "goals"
    HABITS = "habits"
    MILESTONES = "milestones"


class SectionVisibility(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"
    COLLAPSED = "collapsed"


class ActivityType(str, Enum):
    TASK = "task"
    EVENT = "event"
    NOTE = "note"
    GOAL = "goal"
    HABIT = "habit"
    MILESTONE = "milestone"


class ActivityStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class ActivityPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Statuses that count towards overdue/upcoming
OPEN_STATUSES = (ActivityStatus.PENDING.value, ActivityStatus.IN_PROGRESS.value)


class Document(BaseModel):
    """
    Base for models persisted as store documents.

    Stored documents may carry NULL for nested settings/metadata; those
    fall back to the model defaults when hydrated.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    # Fields hydrated from other collections, never written to this one
    transient_fields: ClassVar[frozenset] = frozenset()

    @classmethod
    def from_document(cls, doc: Dict[str, Any], **extra):
        data = {k: v for k, v in doc.items() if v is not None}
        data.update(extra)
        return cls.model_validate(data)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude=set(self.transient_fields))

    def to_cache(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ==================== PLANNERS ====================

class PlannerSettings(BaseModel):
    auto_archive: bool = False
    reminder_enabled: bool = True
    default_view: str = "list"  # list, board, calendar
    theme: str = "auto"


class PlannerMetadata(BaseModel):
    """Rollup recomputed from the planner's activities."""
    last_activity_at: Optional[datetime] = None
    total_activities: int = 0
    completed_activities: int = 0
    schema_version: int = 1


class Collaborator(Document):
    """Role grant on a planner for one user."""
    planner_id: str
    user_id: str
    role: Role
    added_at: Optional[datetime] = None
    added_by: Optional[str] = None

    @property
    def id(self) -> str:
        return self.document_id(self.planner_id, self.user_id)

    @staticmethod
    def document_id(planner_id: str, user_id: str) -> str:
        return f"{planner_id}:{user_id}"

    def to_document(self) -> Dict[str, Any]:
        doc = super().to_document()
        doc["id"] = self.document_id(self.planner_id, self.user_id)
        return doc


class Planner(Document):
    """Root of the hierarchy; owned by exactly one user."""
    transient_fields: ClassVar[frozenset] = frozenset({"collaborators"})

    id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None

    is_public: bool = False
    allow_collaboration: bool = False
    settings: PlannerSettings = Field(default_factory=PlannerSettings)
    collaborators: List[Collaborator] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    metadata: PlannerMetadata = Field(default_factory=PlannerMetadata)

    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def collaborator(self, user_id: str) -> Optional[Collaborator]:
        for collaborator in self.collaborators:
            if collaborator.user_id == user_id:
                return collaborator
        return None


# ==================== SECTIONS ====================

class SectionSettings(BaseModel):
    collapsed: bool = False
    color: Optional[str] = None
    icon: Optional[str] = None
    visibility: SectionVisibility = SectionVisibility.VISIBLE
    max_activities: Optional[int] = None
    auto_archive_completed: bool = False
    default_activity_type: ActivityType = ActivityType.TASK

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class SectionMetadata(BaseModel):
    total_activities: int = 0
    completed_activities: int = 0
    last_activity_at: Optional[datetime] = None


class Section(Document):
    """Ordered group of activities inside a planner."""
    id: str = Field(default_factory=new_id)
    planner_id: str
    title: str
    description: Optional[str] = None
    order: int = 0
    type: SectionType = SectionType.TASKS
    settings: SectionSettings = Field(default_factory=SectionSettings)
    metadata: SectionMetadata = Field(default_factory=SectionMetadata)

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1


# (title, description, color, icon) of the sections every new planner starts with
DEFAULT_SECTIONS = (
    ("To Do", "Tasks that need to be done", "#EF4444", "list"),
    ("In Progress", "Tasks currently being worked on", "#F59E0B", "clock"),
    ("Done", "Completed tasks", "#10B981", "check"),
)


# ==================== ACTIVITIES ====================

class ActivityMetadata(BaseModel):
    """Free-form activity details; durations are in minutes."""
    estimated_duration: Optional[int] = None
    actual_duration: Optional[int] = None
    difficulty: Optional[int] = None
    energy_level: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class Activity(Document):
    """Work item inside a section. planner_id mirrors the section's planner."""
    id: str = Field(default_factory=new_id)
    section_id: str
    planner_id: str
    title: str
    description: Optional[str] = None

    type: ActivityType = ActivityType.TASK
    status: ActivityStatus = ActivityStatus.PENDING
    priority: ActivityPriority = ActivityPriority.MEDIUM

    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    tags: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    assignee: Optional[str] = None
    order: int = 0
    metadata: ActivityMetadata = Field(default_factory=ActivityMetadata)
    recurring: Optional[Dict[str, Any]] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_completed(self) -> bool:
        return self.status == ActivityStatus.COMPLETED.value


# ==================== TIME TRACKING ====================

class TimeEntry(Document):
    """Tracked time on an activity; open while end_time is None."""
    id: str = Field(default_factory=new_id)
    activity_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # minutes
    description: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.end_time is None


# ==================== RESULTS ====================

class ScopeStatistics(BaseModel):
    """Rollup over the activities of a section or planner."""
    total_activities: int = 0
    completed_activities: int = 0
    pending_activities: int = 0
    activities_by_status: Dict[str, int] = Field(default_factory=dict)
    activities_by_priority: Dict[str, int] = Field(default_factory=dict)
    activities_by_type: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    overdue_count: int = 0
    upcoming_count: int = 0
    average_completion_time: Optional[float] = None
    total_time_spent: Optional[int] = None


class PlannerStatistics(ScopeStatistics):
    total_sections: int = 0


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a filtered listing."""
    items: List[T]
    total: int
    page: int = 1
    limit: int = 50
    has_next: bool = False
    has_prev: bool = False


class PlannerDetails(BaseModel):
    """Planner with its statistics and the caller's permissions."""
    planner: Planner
    statistics: PlannerStatistics
    permissions: Dict[str, Any]
