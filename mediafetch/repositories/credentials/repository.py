from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from mediafetch.core.collections import CollectionNames
from mediafetch.models.credential import Credential, CredentialStatus
from mediafetch.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CredentialRepository(BaseRepository):
    """MongoDB repository for the ``credentials`` collection.

    Status changes and claims are compare-and-set writes: the filter pins
    the state the caller observed (``status`` and/or ``version``) and the
    update bumps ``version``, so of two concurrent writers only one wins.
    """

    COLLECTION_NAME = CollectionNames.CREDENTIALS

    async def ensure_indexes(self) -> None:
        await self._col.create_index("id", unique=True)
        await self._col.create_index([("platform", 1), ("tier", 1), ("status", 1)])

    async def insert(self, credential: Credential) -> Credential:
        try:
            await self._col.insert_one(credential.model_dump())
        except PyMongoError as exc:
            logger.exception("Credential insert failed for id=%s", credential.id)
            raise RuntimeError("Database write error") from exc
        return credential

    async def get(self, credential_id: str) -> Credential | None:
        document = self._strip_id(await self._col.find_one({"id": credential_id}))
        return Credential(**document) if document else None

    async def find(
        self,
        platform: str | None = None,
        tier: str | None = None,
        owner: str | None = None,
        statuses: Iterable[CredentialStatus] | None = None,
    ) -> list[Credential]:
        query: dict[str, Any] = {}
        if platform:
            query["platform"] = platform
        if tier:
            query["tier"] = tier
        if owner:
            query["owner"] = owner
        if statuses is not None:
            query["status"] = {"$in": [s.value for s in statuses]}
        credentials = []
        async for document in self._col.find(query):
            credentials.append(Credential(**self._strip_id(document)))
        return credentials

    async def count(self, platform: str) -> int:
        return await self._col.count_documents({"platform": platform})

    async def claim(
        self, credential: Credential, used_at: datetime, recent_uses: list[datetime]
    ) -> Credential | None:
        """Record a use if nobody touched *credential* since it was read."""
        return await self._update(
            {
                "id": credential.id,
                "version": credential.version,
                "status": CredentialStatus.HEALTHY.value,
            },
            {
                "$set": {
                    "recent_uses": recent_uses,
                    "last_used_at": used_at,
                    "updated_at": used_at,
                },
                "$inc": {"version": 1},
            },
        )

    async def transition(
        self,
        credential_id: str,
        from_statuses: Iterable[CredentialStatus],
        fields: dict[str, Any],
        inc: dict[str, int] | None = None,
        version: int | None = None,
    ) -> Credential | None:
        """Move a credential out of one of *from_statuses*.

        Returns ``None`` when the credential was not in an expected status
        (or had a different *version*), meaning another writer got there first.
        """
        query: dict[str, Any] = {
            "id": credential_id,
            "status": {"$in": [s.value for s in from_statuses]},
        }
        if version is not None:
            query["version"] = version
        return await self._update(
            query,
            {"$set": fields, "$inc": {"version": 1, **(inc or {})}},
        )

    async def increment(
        self,
        credential_id: str,
        inc: dict[str, int],
        fields: dict[str, Any] | None = None,
    ) -> Credential | None:
        update: dict[str, Any] = {"$inc": inc}
        if fields:
            update["$set"] = fields
        return await self._update({"id": credential_id}, update)

    async def delete(self, credential_id: str) -> bool:
        result = await self._col.delete_one({"id": credential_id})
        return result.deleted_count > 0

    async def _update(
        self, query: dict[str, Any], update: dict[str, Any]
    ) -> Credential | None:
        try:
            document = await self._col.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as exc:
            logger.exception("Credential update failed for %s", query.get("id"))
            raise RuntimeError("Database write error") from exc
        document = self._strip_id(document)
        return Credential(**document) if document else None
