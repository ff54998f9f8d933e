"""Process-local (L1) cache tier."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class MemoryCache:
    """Bounded TTL cache with LRU eviction.

    Entries never outlive ``max_ttl_seconds`` regardless of the TTL requested
    by the caller. The cache is not shared between processes and is only
    touched from the event loop thread, so no locking is needed.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1_024,
        max_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        if max_ttl_seconds <= 0:
            raise ValueError("max_ttl_seconds must be positive")
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._max_entries = max_entries
        self._max_ttl = max_ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[bool, Any]:
        """Return ``(found, value)``; expired entries are dropped on access."""

        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return False, None
        self._entries.move_to_end(key)
        return True, entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ttl = min(float(ttl_seconds), self._max_ttl)
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["MemoryCache"]
