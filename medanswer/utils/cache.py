"""In-memory cache with TTL support and oldest-first eviction."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import Any, Callable


class TTLCache:
    """Async-safe TTL cache bounded by entry count.

    Entries are kept in insertion order; when the cache is full the oldest
    entry is evicted. Re-setting a key moves it to the newest position.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if now >= expires_at:
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: Any) -> None:
        expires_at = self._clock() + self.ttl_seconds
        async with self._lock:
            if key in self._entries:
                self._entries.pop(key)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (expires_at, value)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "keys": self.keys(),
        }
