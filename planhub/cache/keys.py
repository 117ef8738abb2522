"""
Cache key namespace and TTLs.

Keys are relative; the cache client adds its prefix.
"""

from dataclasses import dataclass


def activity_key(activity_id: str) -> str:
    return f"activity:{activity_id}"


def section_key(section_id: str) -> str:
    return f"section:{section_id}"


def section_activities_key(section_id: str) -> str:
    return f"section-activities:{section_id}"


def section_stats_key(section_id: str) -> str:
    return f"section-stats:{section_id}"


def planner_key(planner_id: str) -> str:
    return f"planner:{planner_id}"


def planner_sections_key(planner_id: str) -> str:
    return f"planner-sections:{planner_id}"


def planner_stats_key(planner_id: str) -> str:
    return f"planner-stats:{planner_id}"


def user_planners_key(user_id: str) -> str:
    return f"user-planners:{user_id}"


def shared_planners_key(user_id: str) -> str:
    return f"shared-planners:{user_id}"


@dataclass(frozen=True)
class CacheTTLs:
    """TTL in seconds per cached view."""
    activity: int = 300
    activity_list: int = 300
    section: int = 300
    section_list: int = 300
    section_stats: int = 120
    planner: int = 300
    planner_list: int = 300
    planner_stats: int = 120

    @classmethod
    def from_settings(cls, settings) -> "CacheTTLs":
        return cls(
            activity=settings.cache_ttl_activity,
            activity_list=settings.cache_ttl_activity_list,
            section=settings.cache_ttl_section,
            section_list=settings.cache_ttl_section_list,
            section_stats=settings.cache_ttl_section_stats,
            planner=settings.cache_ttl_planner,
            planner_list=settings.cache_ttl_planner_list,
            planner_stats=settings.cache_ttl_planner_stats,
        )
