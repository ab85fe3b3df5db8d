"""URL validation, normalization and platform detection.

Everything here is pure string work except ``resolve_short_link``, which
follows redirects through the fetcher.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mediafetch.models.media import Platform
from mediafetch.workers.fetcher import Fetcher, FetchError

logger = logging.getLogger(__name__)


class InvalidUrlError(ValueError):
    """Raised when input cannot be parsed as an http(s) URL."""


PLATFORM_DOMAINS: dict[Platform, tuple[str, ...]] = {
    Platform.FACEBOOK: ("facebook.com", "fb.watch", "fb.me", "fb.com"),
    Platform.INSTAGRAM: ("instagram.com", "instagr.am", "ig.me"),
    Platform.TWITTER: (
        "x.com",
        "twitter.com",
        "t.co",
        "fxtwitter.com",
        "vxtwitter.com",
        "fixupx.com",
        "fixvx.com",
    ),
    Platform.TIKTOK: ("tiktok.com",),
    Platform.WEIBO: ("weibo.com", "weibo.cn", "t.cn"),
}

# host -> canonical host
_CANONICAL_HOSTS: dict[str, str] = {
    "facebook.com": "www.facebook.com",
    "m.facebook.com": "www.facebook.com",
    "mbasic.facebook.com": "www.facebook.com",
    "web.facebook.com": "www.facebook.com",
    "touch.facebook.com": "www.facebook.com",
    "fb.com": "www.facebook.com",
    "www.fb.com": "www.facebook.com",
    "instagram.com": "www.instagram.com",
    "m.instagram.com": "www.instagram.com",
    "instagr.am": "www.instagram.com",
    "www.instagr.am": "www.instagram.com",
    "twitter.com": "x.com",
    "www.twitter.com": "x.com",
    "mobile.twitter.com": "x.com",
    "www.x.com": "x.com",
    "mobile.x.com": "x.com",
    "fxtwitter.com": "x.com",
    "vxtwitter.com": "x.com",
    "fixupx.com": "x.com",
    "fixvx.com": "x.com",
    "tiktok.com": "www.tiktok.com",
    "m.tiktok.com": "www.tiktok.com",
    "www.weibo.com": "weibo.com",
}

_TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "igshid",
        "igsh",
        "s",
        "t",
        "ref",
        "ref_src",
        "ref_url",
        "__tn__",
        "wtsid",
        "_rdr",
        "rdid",
        "share_url",
        "app",
        "mibextid",
        "is_from_webapp",
        "sender_device",
    }
)
_TRACKING_PREFIXES = ("utm_", "__cft__")

_SHORT_LINK_PATTERNS: dict[Platform, re.Pattern[str]] = {
    Platform.FACEBOOK: re.compile(
        r"^https?://(?:fb\.watch|fb\.me|l\.facebook\.com)/|/share/", re.I
    ),
    Platform.INSTAGRAM: re.compile(r"^https?://(?:www\.)?ig\.me/", re.I),
    Platform.TWITTER: re.compile(r"^https?://t\.co/", re.I),
    Platform.TIKTOK: re.compile(r"^https?://(?:vm|vt)\.tiktok\.com/|/t/", re.I),
    Platform.WEIBO: re.compile(r"^https?://t\.cn/", re.I),
}

_STORY_PATTERNS: dict[Platform, re.Pattern[str]] = {
    Platform.FACEBOOK: re.compile(r"/stories/", re.I),
    Platform.INSTAGRAM: re.compile(r"/stories/", re.I),
}


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def detect_platform(url: str) -> Platform | None:
    """Return the platform serving *url*, or ``None`` if unsupported."""
    host = (urlsplit(url).hostname or "").lower()
    if not host:
        return None
    for platform, domains in PLATFORM_DOMAINS.items():
        if any(_host_matches(host, domain) for domain in domains):
            return platform
    return None


def _strip_tracking(query: str) -> str:
    kept = [
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key.lower() not in _TRACKING_PARAMS
        and not key.lower().startswith(_TRACKING_PREFIXES)
    ]
    return urlencode(kept)


def normalize_url(raw_url: str) -> str:
    """Validate *raw_url* and return its canonical form.

    - adds ``https://`` when the scheme is missing
    - lower-cases and canonicalizes alternate hosts
    - strips tracking parameters and the fragment

    Raises:
        InvalidUrlError: when the input is not a usable http(s) URL.
    """
    candidate = (raw_url or "").strip()
    if not candidate:
        raise InvalidUrlError("URL is empty")
    if not re.match(r"^[a-z][a-z0-9+.-]*://", candidate, re.I):
        candidate = "https://" + candidate

    try:
        parts = urlsplit(candidate)
    except ValueError as exc:
        raise InvalidUrlError(str(exc)) from exc
    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidUrlError(f"Unsupported scheme: {parts.scheme}")
    host = (parts.hostname or "").lower()
    if "." not in host or " " in candidate:
        raise InvalidUrlError(f"Invalid host in {raw_url!r}")

    host = _CANONICAL_HOSTS.get(host, host)
    return urlunsplit(("https", host, parts.path or "/", _strip_tracking(parts.query), ""))


def is_short_link(platform: Platform, url: str) -> bool:
    pattern = _SHORT_LINK_PATTERNS.get(platform)
    return bool(pattern and pattern.search(url))


def is_story(platform: Platform, url: str) -> bool:
    pattern = _STORY_PATTERNS.get(platform)
    return bool(pattern and pattern.search(url))


def requires_credential(platform: Platform, url: str) -> bool:
    """Content that is never served to anonymous sessions."""
    return platform is Platform.WEIBO or is_story(platform, url)


async def resolve_short_link(
    fetcher: Fetcher, url: str, timeout: float, headers: dict[str, str] | None = None
) -> str:
    """Follow redirects from a short/share link to its target.

    Tries ``HEAD`` first and falls back to ``GET`` (some hosts reject HEAD).
    Any failure returns *url* unchanged.
    """
    for method in ("HEAD", "GET"):
        try:
            response = await fetcher.request(
                method, url, headers=headers, timeout=timeout
            )
        except FetchError as exc:
            logger.debug("Short link %s via %s failed: %s", url, method, exc)
            continue
        final_url = str(response.url)
        if response.status_code < 400 and final_url != url:
            logger.info("Resolved short link %s -> %s", url, final_url)
            return final_url
    return url
