"""Monitoring helpers for the planning core."""

from .metrics import (
    store_operations_total,
    cache_operations_total,
    cache_invalidations_total,
    version_conflicts_total,
    quota_rejections_total,
    track_store_operation,
    track_cache_operation,
)

__all__ = [
    "store_operations_total",
    "cache_operations_total",
    "cache_invalidations_total",
    "version_conflicts_total",
    "quota_rejections_total",
    "track_store_operation",
    "track_cache_operation",
]
