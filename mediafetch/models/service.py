from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mediafetch.models.common import Document
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import Platform


class PlatformStats(BaseModel):
    total_requests: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_response_time_ms: float = 0.0

    def record(self, success: bool, response_time_ms: float) -> None:
        self.total_requests += 1
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
        self.avg_response_time_ms += (
            response_time_ms - self.avg_response_time_ms
        ) / self.total_requests


class PlatformServiceConfig(Document):
    platform: Platform
    enabled: bool = True
    rate_limit_per_minute: int = 10
    cache_ttl_seconds: int = 259200
    disabled_message: str = "This service is temporarily unavailable."
    stats: PlatformStats = Field(default_factory=PlatformStats)
    updated_at: datetime | None = None


class GlobalServiceConfig(Document):
    maintenance_mode: bool = False
    maintenance_message: str | None = None
    updated_at: datetime | None = None


class Admission(BaseModel):
    allowed: bool
    error_code: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def admit(cls) -> Admission:
        return cls(allowed=True)

    @classmethod
    def deny(cls, code: ErrorCode, message: str) -> Admission:
        return cls(allowed=False, error_code=code, message=message)
