"""Shared (L2) cache tier backed by Redis."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from ..exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

# SCAN MATCH glob metacharacters, escaped so a prefix matches literally.
_GLOB_SPECIAL = re.compile(r"[\\*?\[\]]")


class SharedCacheBackend(Protocol):
    """Operations the two-tier cache needs from its shared tier.

    Implementations raise :class:`CacheUnavailableError` for every failure
    so callers only have one exception to degrade on.
    """

    async def get(self, key: str) -> tuple[bool, Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def aclose(self) -> None: ...


class RedisCacheBackend:
    """JSON values stored with ``SETEX`` under a namespace prefix."""

    def __init__(
        self,
        client: redis_asyncio.Redis,
        *,
        key_prefix: str = "memolens:",
        scan_batch_size: int = 500,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._scan_batch_size = scan_batch_size

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        key_prefix: str = "memolens:",
        socket_timeout: float = 2.0,
    ) -> "RedisCacheBackend":
        client = redis_asyncio.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _namespaced(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> tuple[bool, Any]:
        try:
            raw = await self._client.get(self._namespaced(key))
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"redis GET failed for {key}") from exc
        if raw is None:
            return False, None
        try:
            return True, json.loads(raw)
        except ValueError as exc:
            raise CacheUnavailableError(f"corrupt cache entry for {key}") from exc

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise CacheUnavailableError(f"value for {key} is not JSON serialisable") from exc
        try:
            await self._client.setex(self._namespaced(key), max(1, int(ttl_seconds)), encoded)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"redis SETEX failed for {key}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._namespaced(key))
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"redis DEL failed for {key}") from exc

    async def delete_prefix(self, prefix: str) -> int:
        literal = _GLOB_SPECIAL.sub(lambda match: "\\" + match.group(0), self._namespaced(prefix))
        pattern = f"{literal}*"
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._client.scan_iter(match=pattern, count=self._scan_batch_size):
                batch.append(key)
                if len(batch) >= self._scan_batch_size:
                    removed += await self._client.delete(*batch)
                    batch.clear()
            if batch:
                removed += await self._client.delete(*batch)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"redis prefix delete failed for {prefix}") from exc
        logger.debug("Removed %s keys matching %s", removed, pattern)
        return removed

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError):
            logger.warning("Failed to close redis connection", exc_info=True)


__all__ = ["RedisCacheBackend", "SharedCacheBackend"]
