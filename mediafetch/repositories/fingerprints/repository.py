from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo.errors import PyMongoError

from mediafetch.core.collections import CollectionNames
from mediafetch.models.fingerprint import Fingerprint
from mediafetch.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class FingerprintRepository(BaseRepository):
    """MongoDB repository for the ``fingerprints`` collection."""

    COLLECTION_NAME = CollectionNames.FINGERPRINTS

    async def ensure_indexes(self) -> None:
        await self._col.create_index("id", unique=True)
        await self._col.create_index([("platform", 1), ("enabled", 1)])

    async def count(self) -> int:
        return await self._col.count_documents({})

    async def insert_many(self, fingerprints: list[Fingerprint]) -> None:
        if not fingerprints:
            return
        try:
            await self._col.insert_many([fp.model_dump() for fp in fingerprints])
        except PyMongoError as exc:
            logger.exception("Fingerprint seed failed")
            raise RuntimeError("Database write error") from exc

    async def find_candidates(self, platform: str) -> list[Fingerprint]:
        """Enabled fingerprints scoped to *platform* or to every platform."""
        query = {"enabled": True, "platform": {"$in": [platform, "all"]}}
        fingerprints = []
        async for document in self._col.find(query):
            fingerprints.append(Fingerprint(**self._strip_id(document)))
        return fingerprints

    async def get(self, fingerprint_id: str) -> Fingerprint | None:
        document = self._strip_id(await self._col.find_one({"id": fingerprint_id}))
        return Fingerprint(**document) if document else None

    async def record_pick(self, fingerprint_id: str, now: datetime) -> None:
        await self._col.update_one(
            {"id": fingerprint_id},
            {"$inc": {"use_count": 1}, "$set": {"last_used_at": now}},
        )

    async def record_outcome(
        self, fingerprint_id: str, success: bool, error: str | None = None
    ) -> None:
        update: dict[str, Any]
        if success:
            update = {"$inc": {"success_count": 1}}
        else:
            update = {"$inc": {"error_count": 1}, "$set": {"last_error": error}}
        await self._col.update_one({"id": fingerprint_id}, update)
