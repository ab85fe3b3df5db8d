from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from mediafetch.core.clock import ensure_utc


class Document(BaseModel):
    """Base for records persisted in MongoDB.

    MongoDB hands back naive datetimes unless the client is tz-aware, so
    every datetime field is pinned to UTC on the way in.
    """

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value):
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, list) and value and isinstance(value[0], datetime):
            return [ensure_utc(item) for item in value]
        return value
