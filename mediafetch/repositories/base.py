"""Abstract base class for the MongoDB repositories.

Every collection the resolution core owns is wrapped by one
``BaseRepository`` subclass.

Adding a collection:
    1. Add the collection name to ``CollectionNames``.
    2. Subclass ``BaseRepository``, set ``COLLECTION_NAME``, and override
       ``ensure_indexes()`` with the indexes the collection needs.
    3. Build the repository in ``Container.build`` so the lifespan creates
       its indexes.
"""

from __future__ import annotations

import logging
from abc import ABC
from typing import Any, ClassVar, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection

from mediafetch.core.database import DatabaseManager

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseRepository")


class BaseRepository(ABC):
    """Base class that wires a repository to its Motor collection.

    Subclasses declare:
    - ``COLLECTION_NAME`` - the name string from ``CollectionNames``.
    - ``ensure_indexes()`` - indexes to create at startup (idempotent).
    """

    COLLECTION_NAME: ClassVar[str]

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._col = collection

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_db(cls: type[T], db: DatabaseManager) -> T:
        """Instantiate the repository using a connected ``DatabaseManager``."""
        return cls(db.get_collection(cls.COLLECTION_NAME))

    # ------------------------------------------------------------------
    # Index management (override in subclasses)
    # ------------------------------------------------------------------

    async def ensure_indexes(self) -> None:
        """Create collection indexes.  Called once at startup.

        The default is a no-op; MongoDB skips indexes that already exist.
        """

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _strip_id(document: dict[str, Any] | None) -> dict[str, Any] | None:
        if document is not None:
            document.pop("_id", None)
        return document
