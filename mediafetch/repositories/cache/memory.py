"""In-process cache backend.

Suitable for single-worker deployments and tests.  Entries live in an
``OrderedDict`` so the oldest insertions are evicted first once
``max_items`` is reached.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict, defaultdict
from datetime import datetime

from mediafetch.models.cache import CacheEntry
from mediafetch.repositories.cache.backend import CacheBackend


class MemoryCacheBackend(CacheBackend):
    def __init__(self, max_items: int = 5000) -> None:
        self.max_items = max_items
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    async def put(self, entry: CacheEntry) -> None:
        async with self._lock:
            self._entries.pop(entry.key, None)
            while len(self._entries) >= self.max_items:
                self._entries.popitem(last=False)
            self._entries[entry.key] = entry

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self, platform: str | None = None) -> int:
        async with self._lock:
            if platform is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            keys = [k for k, e in self._entries.items() if e.platform == platform]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def count_by_platform(self) -> dict[str, int]:
        async with self._lock:
            counts: dict[str, int] = defaultdict(int)
            for entry in self._entries.values():
                counts[entry.platform] += 1
            return dict(counts)

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)
