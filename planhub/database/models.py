"""
SQLAlchemy models backing the document collections.

Schema includes:
- Planners (hierarchy roots)
- Collaborators (one record per planner/user pair)
- Sections (ordered within a planner)
- Activities (ordered within a section, planner id stored redundantly)
- Time entries (at most one open entry per user)

Every table is keyed by a string document id and carries created_at,
updated_at and a monotonic version used for compare-and-swap updates.
Parent references are plain indexed columns: cascades are performed by
the repositories in a single atomic batch, not by the database.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ==================== PLANNERS ====================

class PlannerDB(Base):
    """Planner document: the root of a Planner → Section → Activity tree."""
    __tablename__ = "planners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_collaboration: Mapped[bool] = mapped_column(Boolean, default=False)
    settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    # Rollup: last_activity_at, total_activities, completed_activities
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_planners_owner", "owner_id"),
        Index("idx_planners_public", "is_public"),
        Index("idx_planners_updated", "updated_at"),
    )


# ==================== COLLABORATORS ====================

class CollaboratorDB(Base):
    """Sharing grant of a role on a planner to a user."""
    __tablename__ = "collaborators"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)  # {planner_id}:{user_id}
    planner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # viewer, editor, admin

    added_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    added_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        UniqueConstraint("planner_id", "user_id", name="uq_collaborator_planner_user"),
        Index("idx_collaborators_planner", "planner_id"),
        Index("idx_collaborators_user", "user_id"),
    )


# ==================== SECTIONS ====================

class SectionDB(Base):
    """Section document, ordered within its planner."""
    __tablename__ = "sections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    planner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Uniqueness within the planner is checked by the reorder coordinator; a
    # database constraint would reject swaps inside a single batch.
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    type: Mapped[str] = mapped_column(String(30), default="tasks")

    settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_sections_planner", "planner_id"),
        Index("idx_sections_planner_order", "planner_id", "order"),
    )


# ==================== ACTIVITIES ====================

class ActivityDB(Base):
    """Activity document, ordered within its section."""
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    section_id: Mapped[str] = mapped_column(String(64), nullable=False)
    planner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    type: Mapped[str] = mapped_column(String(20), default="task")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    priority: Mapped[str] = mapped_column(String(20), default="medium")

    # Timing
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    dependencies: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    assignee: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # estimated_duration, actual_duration (minutes), difficulty, notes, ...
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    recurring: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_activities_section", "section_id"),
        Index("idx_activities_planner", "planner_id"),
        Index("idx_activities_status", "status"),
        Index("idx_activities_due", "due_date"),
        Index("idx_activities_assignee", "assignee"),
        Index("idx_activities_section_order", "section_id", "order"),
    )


# ==================== TIME TRACKING ====================

class TimeEntryDB(Base):
    """Time tracking entry; end_time is NULL while the entry is running."""
    __tablename__ = "time_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    activity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_time_activity", "activity_id"),
        Index("idx_time_user", "user_id"),
        Index("idx_time_user_end", "user_id", "end_time"),
    )


COLLECTIONS = {
    "planners": PlannerDB,
    "collaborators": CollaboratorDB,
    "sections": SectionDB,
    "activities": ActivityDB,
    "time_entries": TimeEntryDB,
}
