from __future__ import annotations

import logging
from datetime import datetime

from pymongo.errors import DuplicateKeyError, PyMongoError

from mediafetch.core.collections import CollectionNames
from mediafetch.models.cache import CacheEntry
from mediafetch.repositories.base import BaseRepository
from mediafetch.repositories.cache.backend import CacheBackend

logger = logging.getLogger(__name__)


class CacheRepository(BaseRepository, CacheBackend):
    """MongoDB-backed cache store for the ``api_cache`` collection."""

    COLLECTION_NAME = CollectionNames.CACHE

    async def ensure_indexes(self) -> None:
        await self._col.create_index("key", unique=True)
        await self._col.create_index("platform")
        # MongoDB's TTL monitor drops entries once expires_at has passed.
        await self._col.create_index("expires_at", expireAfterSeconds=0)

    async def get(self, key: str) -> CacheEntry | None:
        document = self._strip_id(await self._col.find_one({"key": key}))
        if document is None:
            return None
        return CacheEntry(**document)

    async def put(self, entry: CacheEntry) -> None:
        """Upsert *entry* by key.  The last writer wins."""
        payload = entry.model_dump(mode="python")
        try:
            await self._col.replace_one({"key": entry.key}, payload, upsert=True)
        except DuplicateKeyError:
            # Another writer inserted the key first; overwrite it.
            await self._col.replace_one({"key": entry.key}, payload)
        except PyMongoError as exc:
            logger.exception("Cache write failed for key=%s", entry.key)
            raise RuntimeError("Database write error") from exc

    async def delete(self, key: str) -> bool:
        result = await self._col.delete_one({"key": key})
        return result.deleted_count > 0

    async def clear(self, platform: str | None = None) -> int:
        query = {"platform": platform} if platform else {}
        result = await self._col.delete_many(query)
        return result.deleted_count

    async def count_by_platform(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        cursor = self._col.aggregate(
            [{"$group": {"_id": "$platform", "count": {"$sum": 1}}}]
        )
        async for row in cursor:
            counts[row["_id"]] = row["count"]
        return counts

    async def purge_expired(self, now: datetime) -> int:
        result = await self._col.delete_many({"expires_at": {"$lte": now}})
        return result.deleted_count
