from __future__ import annotations

import logging
from datetime import timedelta

from mediafetch.core.clock import Clock, utcnow
from mediafetch.core.config import Settings
from mediafetch.models.cache import CacheEntry, CacheStats
from mediafetch.models.media import ExtractionResult
from mediafetch.repositories.cache.backend import CacheBackend
from mediafetch.services.cache.keys import cache_key

logger = logging.getLogger(__name__)


class ResultCache:
    """TTL cache of successful extraction results, keyed by content id.

    Hit/miss counters are kept here rather than in the backend so stats
    mean the same thing for every backend.  Counters are per process.
    """

    def __init__(
        self, backend: CacheBackend, settings: Settings, clock: Clock = utcnow
    ) -> None:
        self._backend = backend
        self._settings = settings
        self._clock = clock
        self._hits = 0
        self._misses = 0

    async def get(self, platform: str, url: str) -> ExtractionResult | None:
        key = cache_key(platform, url)
        entry = await self._backend.get(key)
        # Expired rows are left for the TTL index or cleanup(); a delete here
        # could remove a fresh entry written since this read.
        if entry is None or entry.expires_at <= self._clock():
            self._misses += 1
            logger.debug("Cache miss %s", key)
            return None
        self._hits += 1
        logger.info("Cache hit %s", key)
        return entry.payload.model_copy(deep=True, update={"cached": True})

    async def set(
        self,
        platform: str,
        url: str,
        result: ExtractionResult,
        ttl: int | None = None,
    ) -> bool:
        """Store *result* under the canonical key for *url*.

        Failed or empty results are ignored; returns whether it was stored.
        """
        if not result.has_media:
            return False
        now = self._clock()
        seconds = ttl if ttl is not None else self._settings.ttl_for(platform)
        key = cache_key(platform, url)
        await self._backend.put(
            CacheEntry(
                key=key,
                platform=platform,
                url=url,
                payload=result.model_copy(deep=True, update={"cached": False}),
                expires_at=now + timedelta(seconds=seconds),
                created_at=now,
            )
        )
        logger.debug("Cached %s for %ss", key, seconds)
        return True

    async def has(self, platform: str, url: str) -> bool:
        entry = await self._backend.get(cache_key(platform, url))
        return entry is not None and entry.expires_at > self._clock()

    async def delete(self, platform: str, url: str) -> bool:
        return await self._backend.delete(cache_key(platform, url))

    async def clear(self, platform: str | None = None) -> int:
        removed = await self._backend.clear(platform)
        logger.info("Cleared %d cache entries (platform=%s)", removed, platform or "all")
        return removed

    async def cleanup(self) -> int:
        """Purge expired entries; returns how many were removed."""
        return await self._backend.purge_expired(self._clock())

    async def stats(self) -> CacheStats:
        by_platform = await self._backend.count_by_platform()
        lookups = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            hit_rate=round(self._hits / lookups * 100, 1) if lookups else 0.0,
            size=sum(by_platform.values()),
            size_by_platform=by_platform,
        )
