from __future__ import annotations

from datetime import datetime

from mediafetch.models.common import Document


class Fingerprint(Document):
    """A browser profile used to shape outgoing request headers."""

    id: str
    platform: str = "all"
    user_agent: str
    sec_ch_ua: str | None = None
    sec_ch_ua_platform: str | None = None
    sec_ch_ua_mobile: str = "?0"
    accept_language: str = "en-US,en;q=0.9"
    browser: str
    device_type: str = "desktop"
    priority: int = 1
    enabled: bool = True
    use_count: int = 0
    success_count: int = 0
    error_count: int = 0
    last_used_at: datetime | None = None
    last_error: str | None = None
