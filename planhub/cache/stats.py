"""
Cache statistics.

Hit/miss counters per key family (the part of a key before the first
colon, e.g. ``activity`` or ``section-stats``) plus the Redis server's
own keyspace counters, reported by the health endpoint.
"""
import logging
from collections import Counter
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def key_family(key: str) -> str:
    """``section-activities:abc`` -> ``section-activities``."""
    return key.split(":", 1)[0]


class CacheStats:
    """Read-through hit rates of the cache, by key family."""

    def __init__(self, client=None):
        self.client = client
        self.hits: Counter = Counter()
        self.misses: Counter = Counter()

    def record_hit(self, key: str):
        self.hits[key_family(key)] += 1

    def record_miss(self, key: str):
        self.misses[key_family(key)] += 1

    @staticmethod
    def _rate(hits: int, misses: int) -> float:
        total = hits + misses
        return hits / total if total else 0.0

    def get_summary(self) -> Dict[str, Any]:
        hits = sum(self.hits.values())
        misses = sum(self.misses.values())
        families = sorted(set(self.hits) | set(self.misses))
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": self._rate(hits, misses),
            "families": {
                family: {
                    "hits": self.hits[family],
                    "misses": self.misses[family],
                    "hit_rate": self._rate(self.hits[family], self.misses[family]),
                }
                for family in families
            },
        }

    async def get_redis_stats(self) -> Optional[Dict[str, Any]]:
        """Server-side counters, or None when Redis is not configured or unreachable."""
        if not self.client:
            return None

        try:
            info = await self.client.info()
        except Exception as e:
            logger.error(f"Failed to get Redis stats: {e}")
            return None

        return {
            "redis_version": info.get("redis_version"),
            "used_memory_human": info.get("used_memory_human"),
            "keyspace_hits": info.get("keyspace_hits"),
            "keyspace_misses": info.get("keyspace_misses"),
        }

    async def get_full_stats(self) -> Dict[str, Any]:
        redis_stats = await self.get_redis_stats()
        return {
            "application": self.get_summary(),
            "redis": redis_stats,
            "redis_available": redis_stats is not None,
        }
