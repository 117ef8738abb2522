"""
Listing filter criteria.

Callers describe listings and statistics with a plain dict of criteria.
Activity criteria become store filters; planner criteria become a
predicate over the user's cached planner listing.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..database.store import Filter
from ..exceptions import ValidationError
from ..models.entities import ActivityPriority, ActivityStatus, ActivityType, Planner
from ..utils.datetime_utils import to_naive_local

# Fields an activity listing may be sorted by
SORTABLE_FIELDS = ("order", "due_date", "priority", "status", "title", "created_at", "updated_at")

_ENUMS = {
    "status": ActivityStatus,
    "priority": ActivityPriority,
    "type": ActivityType,
}


def _enum_values(name: str, value: Any) -> List[str]:
    values = value if isinstance(value, (list, tuple, set)) else [value]
    enum = _ENUMS[name]
    try:
        return [enum(v).value for v in values]
    except ValueError:
        raise ValidationError(f"Invalid {name} filter: {value}") from None


def _datetime(name: str, value: Any, timezone: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid date for {name}: {value}") from None
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid date for {name}: {value}")
    return to_naive_local(value, timezone)


def build_activity_filters(criteria: Optional[Dict[str, Any]], timezone: str) -> List[Filter]:
    """
    Translate filter criteria into store filters. Aware dates are
    converted to naive local time in ``timezone``.

    Supported keys: status, priority, type (a value or a list of values),
    section_id, assignee, created_by, tags (any of), due_before, due_after.

    Raises:
        ValidationError: unknown key or invalid value
    """
    filters: List[Filter] = []
    for name, value in (criteria or {}).items():
        if value is None:
            continue
        if name in _ENUMS:
            values = _enum_values(name, value)
            if len(values) == 1:
                filters.append(Filter(name, "==", values[0]))
            else:
                filters.append(Filter(name, "in", values))
        elif name in ("section_id", "assignee", "created_by"):
            filters.append(Filter(name, "==", value))
        elif name == "tags":
            tags = list(value) if isinstance(value, (list, tuple, set)) else [value]
            filters.append(Filter("tags", "array-contains-any", tags))
        elif name == "due_before":
            filters.append(Filter("due_date", "<=", _datetime(name, value, timezone)))
        elif name == "due_after":
            filters.append(Filter("due_date", ">=", _datetime(name, value, timezone)))
        else:
            raise ValidationError(f"Unsupported activity filter: {name}")
    return filters


# ==================== PLANNERS ====================

PLANNER_SORTABLE_FIELDS = ("updated_at", "created_at", "title")


def planner_matcher(criteria: Optional[Dict[str, Any]]) -> Callable[[Planner], bool]:
    """
    Predicate for planner listing criteria.

    Supported keys: search (case-insensitive match on the title), tags
    (any of), is_archived, is_public.

    Raises:
        ValidationError: unknown key or invalid value
    """
    checks: List[Callable[[Planner], bool]] = []
    for name, value in (criteria or {}).items():
        if value is None:
            continue
        if name == "search":
            needle = str(value).strip().lower()
            if needle:
                checks.append(lambda p, needle=needle: needle in p.title.lower())
        elif name == "tags":
            tags = set(value) if isinstance(value, (list, tuple, set)) else {value}
            checks.append(lambda p, tags=tags: bool(tags.intersection(p.tags)))
        elif name in ("is_archived", "is_public"):
            if not isinstance(value, bool):
                raise ValidationError(f"{name} must be true or false")
            checks.append(lambda p, name=name, value=value: getattr(p, name) is value)
        else:
            raise ValidationError(f"Unsupported planner filter: {name}")
    return lambda planner: all(check(planner) for check in checks)


def planner_sort_key(sort_by: str) -> Callable[[Planner], Any]:
    if sort_by not in PLANNER_SORTABLE_FIELDS:
        raise ValidationError(f"Cannot sort planners by {sort_by}", {"allowed": list(PLANNER_SORTABLE_FIELDS)})
    if sort_by == "title":
        return lambda p: p.title.lower()
    return lambda p: getattr(p, sort_by) or datetime.min
