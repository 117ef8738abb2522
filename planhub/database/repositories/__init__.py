"""
Hierarchy repositories.

Each repository owns the cache keys of its entity and the child-list
cache of its parent scope.
"""

from .base import BaseRepository
from .collaborators import CollaboratorRepository
from .planners import PlannerRepository
from .sections import SectionRepository
from .activities import ActivityRepository
from .time_entries import TimeEntryRepository

__all__ = [
    "BaseRepository",
    "CollaboratorRepository",
    "PlannerRepository",
    "SectionRepository",
    "ActivityRepository",
    "TimeEntryRepository",
]
