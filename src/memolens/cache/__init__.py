"""Two-tier (process-local + Redis) cache."""

from .memory import MemoryCache
from .redis_backend import RedisCacheBackend, SharedCacheBackend
from .two_tier import MISS, CacheStats, TwoTierCache

__all__ = [
    "MISS",
    "CacheStats",
    "MemoryCache",
    "RedisCacheBackend",
    "SharedCacheBackend",
    "TwoTierCache",
]
