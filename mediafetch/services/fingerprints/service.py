from __future__ import annotations

import logging
import random

from mediafetch.core.clock import Clock, utcnow
from mediafetch.models.fingerprint import Fingerprint
from mediafetch.repositories.fingerprints.repository import FingerprintRepository
from mediafetch.services.fingerprints.profiles import DEFAULT_PROFILES

logger = logging.getLogger(__name__)

# Platforms that reject requests without client-hint headers.
_CHROMIUM_ONLY = frozenset({"facebook", "instagram"})


class FingerprintPool:
    """Weighted-random rotation over stored browser profiles."""

    def __init__(
        self,
        repo: FingerprintRepository,
        rng: random.Random | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._rng = rng or random.Random()
        self._clock = clock

    async def seed_defaults(self) -> int:
        """Insert the built-in profiles when the collection is empty."""
        if await self._repo.count():
            return 0
        profiles = [Fingerprint(**profile) for profile in DEFAULT_PROFILES]
        await self._repo.insert_many(profiles)
        logger.info("Seeded %d default browser profiles", len(profiles))
        return len(profiles)

    async def pick(
        self, platform: str, device_type: str | None = None
    ) -> Fingerprint | None:
        candidates = await self._repo.find_candidates(platform)
        if device_type:
            matching = [c for c in candidates if c.device_type == device_type]
            candidates = matching or candidates
        if platform in _CHROMIUM_ONLY:
            chromium = [c for c in candidates if c.sec_ch_ua]
            candidates = chromium or candidates
        candidates = [c for c in candidates if c.priority > 0]
        if not candidates:
            return None

        chosen = self._rng.choices(
            candidates, weights=[c.priority for c in candidates], k=1
        )[0]
        await self._repo.record_pick(chosen.id, self._clock())
        logger.debug("Picked fingerprint %s for %s", chosen.id, platform)
        return chosen

    async def report_outcome(
        self, fingerprint_id: str, success: bool, error: str | None = None
    ) -> None:
        await self._repo.record_outcome(fingerprint_id, success, error)
