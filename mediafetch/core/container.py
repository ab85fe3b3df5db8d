"""Wires settings, storage and services together for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mediafetch.core.clock import Clock, utcnow
from mediafetch.core.config import Settings
from mediafetch.core.database import DatabaseManager
from mediafetch.repositories.cache.backend import CacheBackend
from mediafetch.repositories.cache.memory import MemoryCacheBackend
from mediafetch.repositories.cache.repository import CacheRepository
from mediafetch.repositories.credentials.repository import CredentialRepository
from mediafetch.repositories.fingerprints.repository import FingerprintRepository
from mediafetch.repositories.service_config.repository import ServiceConfigRepository
from mediafetch.services.cache.service import ResultCache
from mediafetch.services.credentials.service import CredentialPool
from mediafetch.services.fingerprints.service import FingerprintPool
from mediafetch.services.governor.service import ServiceGovernor
from mediafetch.services.resolver.service import Resolver
from mediafetch.workers.fetcher import Fetcher

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    db: DatabaseManager
    fetcher: Fetcher
    cache: ResultCache
    credentials: CredentialPool
    fingerprints: FingerprintPool
    governor: ServiceGovernor
    resolver: Resolver

    @classmethod
    async def build(
        cls,
        settings: Settings,
        db: DatabaseManager | None = None,
        fetcher: Fetcher | None = None,
        clock: Clock = utcnow,
    ) -> Container:
        """Connect to MongoDB, create indexes and assemble the services."""
        if db is None:
            db = DatabaseManager(settings)
            await db.connect()
        fetcher = fetcher or Fetcher(settings)

        cache_repo = CacheRepository.from_db(db)
        credential_repo = CredentialRepository.from_db(db)
        fingerprint_repo = FingerprintRepository.from_db(db)
        config_repo = ServiceConfigRepository.from_db(db)
        for repo in (cache_repo, credential_repo, fingerprint_repo, config_repo):
            await repo.ensure_indexes()

        backend: CacheBackend = cache_repo
        if settings.cache_backend == "memory":
            backend = MemoryCacheBackend()
        logger.info("Result cache backend: %s", settings.cache_backend)

        cache = ResultCache(backend, settings, clock)
        credentials = CredentialPool(credential_repo, fetcher, settings, clock)
        fingerprints = FingerprintPool(fingerprint_repo, clock=clock)
        governor = ServiceGovernor(config_repo, settings, clock)
        await fingerprints.seed_defaults()
        await governor.refresh(force=True)

        resolver = Resolver(fetcher, cache, credentials, fingerprints, governor, settings)
        return cls(
            settings=settings,
            db=db,
            fetcher=fetcher,
            cache=cache,
            credentials=credentials,
            fingerprints=fingerprints,
            governor=governor,
            resolver=resolver,
        )

    async def close(self) -> None:
        await self.governor.flush()
        await self.fetcher.close()
        await self.db.disconnect()
