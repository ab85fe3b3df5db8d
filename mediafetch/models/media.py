from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from mediafetch.models.errors import ErrorCode, default_message


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    WEIBO = "weibo"


class MediaType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"


class MediaFormat(BaseModel):
    """One downloadable variant of a media item."""

    quality: str
    type: MediaType
    url: str
    thumbnail: str | None = None
    item_id: str | None = None
    filename: str | None = None
    size: int | None = None
    has_audio: bool | None = None
    format: str | None = None


class Engagement(BaseModel):
    views: int | None = None
    likes: int | None = None
    comments: int | None = None
    shares: int | None = None
    bookmarks: int | None = None


class ExtractionResult(BaseModel):
    """Outcome of resolving one URL.

    Successful results carry ``formats``; failed ones carry ``error_code``
    and a user-facing ``message``.
    """

    success: bool
    platform: Platform | None = None
    url: str | None = None
    title: str | None = None
    thumbnail: str | None = None
    author: str | None = None
    author_name: str | None = None
    description: str | None = None
    posted_at: str | None = None
    formats: list[MediaFormat] = Field(default_factory=list)
    engagement: Engagement | None = None
    used_cookie: bool = False
    response_time_ms: int | None = None
    cached: bool = False
    error_code: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str | None = None,
        platform: Platform | None = None,
    ) -> ExtractionResult:
        return cls(
            success=False,
            platform=platform,
            error_code=code,
            message=message or default_message(code),
        )

    @property
    def has_media(self) -> bool:
        return self.success and bool(self.formats)
