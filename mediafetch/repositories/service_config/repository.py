from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo.errors import PyMongoError

from mediafetch.core.collections import CollectionNames
from mediafetch.models.service import (
    GlobalServiceConfig,
    PlatformServiceConfig,
    PlatformStats,
)
from mediafetch.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_GLOBAL_KEY = "global"


class ServiceConfigRepository(BaseRepository):
    """MongoDB repository for the ``service_config`` collection.

    One document per platform (``key`` = platform name) plus a single
    ``key = "global"`` document holding the maintenance switch.
    """

    COLLECTION_NAME = CollectionNames.SERVICE_CONFIG

    async def ensure_indexes(self) -> None:
        await self._col.create_index("key", unique=True)

    async def load_platforms(self) -> dict[str, dict[str, Any]]:
        """Return the stored platform rows keyed by platform name.

        Rows are returned raw so the caller can layer them over its
        per-platform defaults; a row may hold only a subset of fields.
        """
        rows: dict[str, dict[str, Any]] = {}
        async for document in self._col.find({"key": {"$ne": _GLOBAL_KEY}}):
            document = self._strip_id(document)
            rows[document.pop("key")] = document
        return rows

    async def load_global(self) -> GlobalServiceConfig:
        document = self._strip_id(await self._col.find_one({"key": _GLOBAL_KEY}))
        if document is None:
            return GlobalServiceConfig()
        document.pop("key", None)
        return GlobalServiceConfig(**document)

    async def save_platform(self, config: PlatformServiceConfig) -> None:
        payload = config.model_dump(exclude={"stats"})
        await self._col.update_one(
            {"key": config.platform.value},
            {"$set": payload},
            upsert=True,
        )

    async def save_global(self, config: GlobalServiceConfig) -> None:
        await self._col.update_one(
            {"key": _GLOBAL_KEY}, {"$set": config.model_dump()}, upsert=True
        )

    async def save_stats(
        self, platform: str, stats: PlatformStats, now: datetime
    ) -> None:
        """Persist running stats without touching the operator-owned fields."""
        try:
            await self._col.update_one(
                {"key": platform},
                {
                    "$set": {"stats": stats.model_dump(), "updated_at": now},
                    "$setOnInsert": {"platform": platform},
                },
                upsert=True,
            )
        except PyMongoError:
            logger.exception("Failed to persist stats for %s", platform)
