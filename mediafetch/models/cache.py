from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mediafetch.models.common import Document
from mediafetch.models.media import ExtractionResult


class CacheEntry(Document):
    key: str
    platform: str
    url: str
    payload: ExtractionResult
    expires_at: datetime
    created_at: datetime


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    size: int = 0
    size_by_platform: dict[str, int] = Field(default_factory=dict)
