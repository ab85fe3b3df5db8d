from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from datetime import datetime

from mediafetch.core.clock import Clock, utcnow
from mediafetch.core.config import Settings
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import Platform
from mediafetch.models.service import (
    Admission,
    GlobalServiceConfig,
    PlatformServiceConfig,
    PlatformStats,
)
from mediafetch.repositories.service_config.repository import ServiceConfigRepository

logger = logging.getLogger(__name__)

PLATFORM_NAMES: dict[Platform, str] = {
    Platform.FACEBOOK: "Facebook",
    Platform.INSTAGRAM: "Instagram",
    Platform.TWITTER: "Twitter/X",
    Platform.TIKTOK: "TikTok",
    Platform.WEIBO: "Weibo",
}

DEFAULT_RATE_LIMITS: dict[Platform, int] = {
    Platform.FACEBOOK: 10,
    Platform.INSTAGRAM: 15,
    Platform.TWITTER: 20,
    Platform.TIKTOK: 15,
    Platform.WEIBO: 10,
}

_WINDOW_SECONDS = 60.0
_OPERATOR_FIELDS = frozenset(
    {"enabled", "rate_limit_per_minute", "cache_ttl_seconds", "disabled_message"}
)


class ServiceGovernor:
    """Admission control and running stats per platform.

    Operator-owned settings (enable flags, limits, messages, maintenance)
    are read from ``service_config`` and refreshed every
    ``governor_refresh_seconds``.  The per-minute limiter and the stats are
    held in process; stats are written back every ``stats_flush_every``
    recorded requests and on ``flush()``.
    """

    def __init__(
        self,
        repo: ServiceConfigRepository,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._settings = settings
        self._clock = clock
        self._platforms: dict[str, PlatformServiceConfig] = {
            p.value: self.default_config(p) for p in Platform
        }
        self._global = GlobalServiceConfig()
        self._loaded_at: datetime | None = None
        self._windows: dict[str, deque[float]] = defaultdict(deque)
        self._stats: dict[str, PlatformStats] = {}
        self._pending: dict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()

    def default_config(self, platform: Platform) -> PlatformServiceConfig:
        return PlatformServiceConfig(
            platform=platform,
            rate_limit_per_minute=DEFAULT_RATE_LIMITS[platform],
            cache_ttl_seconds=self._settings.ttl_for(platform.value),
            disabled_message=f"{PLATFORM_NAMES[platform]} service is temporarily unavailable.",
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> None:
        """Reload operator config if the cached copy is stale."""
        if not force and not self._is_stale():
            return
        async with self._refresh_lock:
            if not force and not self._is_stale():
                return
            rows = await self._repo.load_platforms()
            self._global = await self._repo.load_global()
            for platform in Platform:
                row = rows.get(platform.value, {})
                overrides = {k: v for k, v in row.items() if k in _OPERATOR_FIELDS}
                base = self.default_config(platform).model_dump()
                self._platforms[platform.value] = PlatformServiceConfig(
                    **{**base, **overrides}
                )
                if platform.value not in self._stats and row.get("stats"):
                    self._stats[platform.value] = PlatformStats(**row["stats"])
            self._loaded_at = self._clock()
            logger.debug("Service config reloaded")

    def _is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        age = (self._clock() - self._loaded_at).total_seconds()
        return age >= self._settings.governor_refresh_seconds

    def config(self, platform: str) -> PlatformServiceConfig:
        config = self._platforms[platform].model_copy()
        config.stats = self.stats(platform)
        return config

    def cache_ttl(self, platform: str) -> int:
        return self._platforms[platform].cache_ttl_seconds

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def admit(self, platform: str) -> Admission:
        """Check maintenance, the platform flag and the per-minute limit.

        An admitted request consumes one slot in the rolling window.
        """
        await self.refresh()
        if self._global.maintenance_mode:
            message = self._global.maintenance_message or self._settings.maintenance_message
            logger.info("Denied %s request: maintenance mode", platform)
            return Admission.deny(ErrorCode.MAINTENANCE, message)

        config = self._platforms[platform]
        if not config.enabled:
            logger.info("Denied %s request: platform disabled", platform)
            return Admission.deny(ErrorCode.PLATFORM_DISABLED, config.disabled_message)

        now = self._clock().timestamp()
        async with self._lock:
            window = self._windows[platform]
            while window and window[0] <= now - _WINDOW_SECONDS:
                window.popleft()
            if len(window) >= config.rate_limit_per_minute:
                logger.warning(
                    "Denied %s request: %d requests in the last minute",
                    platform,
                    len(window),
                )
                return Admission.deny(
                    ErrorCode.RATE_LIMITED,
                    f"Too many {PLATFORM_NAMES[Platform(platform)]} requests. "
                    "Please wait a minute and try again.",
                )
            window.append(now)
        return Admission.admit()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def record_outcome(
        self, platform: str, success: bool, response_time_ms: float
    ) -> None:
        async with self._lock:
            stats = self._stats.setdefault(platform, PlatformStats())
            stats.record(success, response_time_ms)
            self._pending[platform] += 1
            if self._pending[platform] < self._settings.stats_flush_every:
                return
            self._pending[platform] = 0
            snapshot = stats.model_copy()
        await self._repo.save_stats(platform, snapshot, self._clock())

    def stats(self, platform: str) -> PlatformStats:
        return self._stats.get(platform, PlatformStats()).model_copy()

    async def flush(self) -> None:
        """Persist stats that have not been written yet."""
        async with self._lock:
            dirty = {
                platform: self._stats[platform].model_copy()
                for platform, pending in self._pending.items()
                if pending
            }
            self._pending.clear()
        now = self._clock()
        for platform, snapshot in dirty.items():
            await self._repo.save_stats(platform, snapshot, now)

    async def reset_stats(self, platform: str) -> None:
        async with self._lock:
            self._stats[platform] = PlatformStats()
            self._pending.pop(platform, None)
        await self._repo.save_stats(platform, PlatformStats(), self._clock())

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def set_maintenance(self, enabled: bool, message: str | None = None) -> None:
        self._global = GlobalServiceConfig(
            maintenance_mode=enabled,
            maintenance_message=message or self._global.maintenance_message,
            updated_at=self._clock(),
        )
        await self._repo.save_global(self._global)
        logger.warning("Maintenance mode %s", "enabled" if enabled else "disabled")

    async def update_platform(self, platform: str, **changes) -> PlatformServiceConfig:
        """Apply operator changes; limits are clamped to sane ranges."""
        unknown = set(changes) - _OPERATOR_FIELDS
        if unknown:
            raise ValueError(f"Unknown platform settings: {', '.join(sorted(unknown))}")
        if changes.get("rate_limit_per_minute") is not None:
            changes["rate_limit_per_minute"] = max(1, min(100, changes["rate_limit_per_minute"]))
        if changes.get("cache_ttl_seconds") is not None:
            changes["cache_ttl_seconds"] = max(0, changes["cache_ttl_seconds"])
        current = self._platforms[platform].model_dump()
        updated = PlatformServiceConfig(
            **{**current, **{k: v for k, v in changes.items() if v is not None}},
        )
        updated.updated_at = self._clock()
        self._platforms[platform] = updated
        await self._repo.save_platform(updated)
        return updated
