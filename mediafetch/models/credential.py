from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from mediafetch.models.common import Document
from mediafetch.models.media import Platform


class CredentialStatus(str, Enum):
    HEALTHY = "healthy"
    COOLDOWN = "cooldown"
    EXPIRED = "expired"
    DISABLED = "disabled"


class CredentialTier(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class CredentialOutcome(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    OTHER_ERROR = "other_error"


class Credential(Document):
    """A stored cookie session.

    ``recent_uses`` holds the claim timestamps inside the rolling hour and
    ``version`` is bumped on every claim or status change so that writers
    can compare-and-set.
    """

    id: str
    platform: Platform
    tier: CredentialTier = CredentialTier.PUBLIC
    owner: str | None = None
    secret: str
    label: str | None = None
    status: CredentialStatus = CredentialStatus.HEALTHY
    use_count: int = 0
    success_count: int = 0
    error_count: int = 0
    cooldown_until: datetime | None = None
    max_uses_per_hour: int = 60
    recent_uses: list[datetime] = Field(default_factory=list)
    last_used_at: datetime | None = None
    last_error: str | None = None
    version: int = 0
    created_at: datetime
    updated_at: datetime


class CredentialCreate(BaseModel):
    """Operator input for a new credential."""

    platform: Platform
    secret: str
    tier: CredentialTier = CredentialTier.PUBLIC
    owner: str | None = None
    label: str | None = None
    max_uses_per_hour: int | None = None


class CredentialTestResult(BaseModel):
    healthy: bool
    error: str | None = None
    status_code: int | None = None
