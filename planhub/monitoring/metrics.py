"""
Prometheus metrics for the planning core.

Counters only; exposition is left to the hosting process.
"""
from prometheus_client import Counter
import logging

logger = logging.getLogger(__name__)

# Store Metrics
store_operations_total = Counter(
    'planhub_store_operations_total',
    'Document store operations',
    ['collection', 'operation', 'result']  # result: ok, error
)

# Cache Metrics
cache_operations_total = Counter(
    'planhub_cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set/delete, hit/miss/ok/error
)

cache_invalidations_total = Counter(
    'planhub_cache_invalidations_total',
    'Cache invalidation cascades applied',
    ['entity', 'kind']  # kind: self, scope, children
)

# Consistency Metrics
version_conflicts_total = Counter(
    'planhub_version_conflicts_total',
    'Optimistic concurrency conflicts',
    ['collection']
)

quota_rejections_total = Counter(
    'planhub_quota_rejections_total',
    'Create operations rejected by plan quotas',
    ['resource', 'plan']
)


def track_store_operation(collection: str, operation: str, ok: bool = True):
    """Record a store operation outcome."""
    try:
        store_operations_total.labels(
            collection=collection,
            operation=operation,
            result="ok" if ok else "error",
        ).inc()
    except Exception as e:
        logger.debug(f"Failed to record store metric: {e}")


def track_cache_operation(operation: str, result: str):
    """Record a cache operation outcome (hit, miss, ok, error)."""
    try:
        cache_operations_total.labels(operation=operation, result=result).inc()
    except Exception as e:
        logger.debug(f"Failed to record cache metric: {e}")
