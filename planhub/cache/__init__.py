"""
Cache layer.

Best-effort Redis cache plus the declarative invalidation cascade.
"""

from .redis_client import CacheClient, create_redis
from .stats import CacheStats
from .keys import CacheTTLs
from .invalidation import CASCADE, CascadeRule, CacheInvalidator, cascade_keys

__all__ = [
    "CacheClient",
    "create_redis",
    "CacheStats",
    "CacheTTLs",
    "CASCADE",
    "CascadeRule",
    "CacheInvalidator",
    "cascade_keys",
]
