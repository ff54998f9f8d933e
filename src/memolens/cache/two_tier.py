"""Read-through two-tier cache.

Reads consult the process-local tier first and the shared tier second; a
shared-tier hit is copied back into the local tier. Writes go to both tiers.
Failures of the shared tier never reach callers: they are logged and the
cache keeps working with the local tier only.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

import structlog

from ..exceptions import CacheUnavailableError
from .memory import MemoryCache
from .redis_backend import SharedCacheBackend

logger = structlog.get_logger(__name__)


class _Miss:
    _instance: "_Miss | None" = None

    def __new__(cls) -> "_Miss":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


@dataclass(slots=True)
class CacheStats:
    l1_hits: int = 0
    l2_hits: int = 0
    misses: int = 0
    l2_errors: int = 0
    computes: int = 0
    coalesced: int = 0
    l1_entries: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class TwoTierCache:
    """L1 :class:`MemoryCache` in front of an optional shared backend."""

    def __init__(
        self,
        *,
        l1: MemoryCache,
        l2: SharedCacheBackend | None = None,
        default_ttl_seconds: int = 3_600,
    ) -> None:
        self._l1 = l1
        self._l2 = l2
        self._default_ttl = default_ttl_seconds
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._stats = CacheStats()

    # Public API ---------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return the cached value or :data:`MISS`."""

        found, value = self._l1.get(key)
        if found:
            self._stats.l1_hits += 1
            return value
        if self._l2 is not None:
            try:
                found, value = await self._l2.get(key)
            except CacheUnavailableError as exc:
                self._record_l2_failure("get", key, exc)
            else:
                if found:
                    self._stats.l2_hits += 1
                    self._l1.set(key, value, self._default_ttl)
                    return value
        self._stats.misses += 1
        return MISS

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        ttl_seconds: int | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss.

        Concurrent misses on the same key share one ``compute()`` call. When
        it raises, every waiter sees the exception and nothing is stored.
        ``timeout`` bounds only this caller's wait and raises
        :class:`asyncio.TimeoutError`; the shared compute keeps running and
        still stores its value.
        """

        value = await self.get(key)
        if value is not MISS:
            return value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._compute_and_store(key, compute, ttl_seconds))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            self._stats.coalesced += 1
        if timeout is None:
            return await asyncio.shield(task)
        return await asyncio.wait_for(asyncio.shield(task), timeout)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        self._l1.set(key, value, ttl)
        if self._l2 is None:
            return
        try:
            await self._l2.set(key, value, ttl)
        except CacheUnavailableError as exc:
            self._record_l2_failure("set", key, exc)

    async def invalidate(self, key: str) -> None:
        self._l1.delete(key)
        if self._l2 is None:
            return
        try:
            await self._l2.delete(key)
        except CacheUnavailableError as exc:
            self._record_l2_failure("delete", key, exc)

    async def invalidate_by_prefix(self, prefix: str) -> None:
        removed = self._l1.delete_prefix(prefix)
        if self._l2 is not None:
            try:
                removed += await self._l2.delete_prefix(prefix)
            except CacheUnavailableError as exc:
                self._record_l2_failure("delete_prefix", prefix, exc)
        logger.debug("cache.invalidated", prefix=prefix, removed=removed)

    def stats(self) -> dict[str, int]:
        self._stats.l1_entries = len(self._l1)
        return self._stats.as_dict()

    async def aclose(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        if self._l2 is not None:
            await self._l2.aclose()

    # Helpers ------------------------------------------------------------

    async def _compute_and_store(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None,
    ) -> Any:
        self._stats.computes += 1
        value = await compute()
        await self.set(key, value, ttl_seconds)
        return value

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception as retrieved when every waiter went away.
            task.exception()

    def _record_l2_failure(self, operation: str, key: str, exc: Exception) -> None:
        self._stats.l2_errors += 1
        logger.warning("cache.l2.unavailable", operation=operation, key=key, error=str(exc))


__all__ = ["MISS", "CacheStats", "TwoTierCache"]
