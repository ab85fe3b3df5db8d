from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from mediafetch.models.cache import CacheEntry


class CacheBackend(ABC):
    """Storage contract behind ``ResultCache``.

    Backends store and return entries verbatim; expiry decisions and
    hit/miss accounting belong to the cache service so they behave the
    same whichever backend is plugged in.
    """

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def clear(self, platform: str | None = None) -> int: ...

    @abstractmethod
    async def count_by_platform(self) -> dict[str, int]: ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...
