from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_ttls() -> dict[str, int]:
    # Platforms whose media URLs rotate faster get shorter lifetimes.
    return {
        "facebook": 3600,
        "instagram": 7200,
        "twitter": 259200,
        "tiktok": 259200,
        "weibo": 259200,
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="MEDIAFETCH_", extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "mediafetch"
    mongo_max_pool_size: int = 10

    # HTTP fetcher
    http_timeout: float = 12.0
    http_max_retries: int = 2
    http_verify_ssl: bool = True  # set False behind corporate SSL-inspection proxies
    resolve_timeout: float = 5.0

    # Result cache
    cache_backend: str = "mongo"  # "mongo" or "memory"
    cache_default_ttl_seconds: int = 259200
    cache_ttl_seconds: dict[str, int] = Field(default_factory=_default_cache_ttls)

    # Credential pool
    credential_cooldown_minutes: int = 30
    credential_max_uses_per_hour: int = 60

    # Service governor
    governor_refresh_seconds: float = 30.0
    stats_flush_every: int = 100
    maintenance_message: str = (
        "Service is under maintenance. Please try again later."
    )

    # Logging
    log_level: str = "INFO"

    def ttl_for(self, platform: str) -> int:
        return self.cache_ttl_seconds.get(platform, self.cache_default_ttl_seconds)
