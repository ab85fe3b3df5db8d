"""Canonical cache keys.

A key is ``platform:contentId`` when a content-id pattern matches the URL,
otherwise ``platform:`` followed by the lower-cased URL without its query
string or trailing slash.  Patterns are tried in order; the first match
wins.
"""

from __future__ import annotations

import re

_CONTENT_ID_PATTERNS: dict[str, list[tuple[re.Pattern[str], str]]] = {
    "facebook": [
        (re.compile(r"/(?:reel|videos)/(\d+)"), "video:{}"),
        (re.compile(r"[?&]v=(\d+)"), "video:{}"),
        (re.compile(r"/share/[prv]/([A-Za-z0-9]+)"), "share:{}"),
        (re.compile(r"/posts/(pfbid[A-Za-z0-9]+|\d+)"), "post:{}"),
        (re.compile(r"[?&]story_fbid=(pfbid[A-Za-z0-9]+|\d+)"), "post:{}"),
        (re.compile(r"/stories/(?:[^/?#]+/)?(\d+)"), "story:{}"),
    ],
    "instagram": [
        (re.compile(r"/stories/[^/?#]+/(\d+)"), "story:{}"),
        (re.compile(r"/(?:p|reel|reels|tv)/([A-Za-z0-9_-]+)"), "{}"),
    ],
    "twitter": [
        (re.compile(r"/status(?:es)?/(\d+)"), "{}"),
    ],
    "tiktok": [
        (re.compile(r"/(?:video|photo)/(\d+)"), "{}"),
    ],
    "weibo": [
        (re.compile(r"/tv/show/(\d+:[A-Za-z0-9]+)"), "tv:{}"),
        (re.compile(r"/(?:detail|status)/([A-Za-z0-9]+)"), "{}"),
        (re.compile(r"weibo\.com/\d+/([A-Za-z0-9]+)"), "{}"),
    ],
}


def extract_content_id(platform: str, url: str) -> str | None:
    for pattern, template in _CONTENT_ID_PATTERNS.get(platform, []):
        match = pattern.search(url)
        if match:
            return template.format(match.group(1))
    return None


def cache_key(platform: str, url: str) -> str:
    content_id = extract_content_id(platform, url)
    if content_id:
        return f"{platform}:{content_id}"
    fallback = url.split("?", 1)[0].split("#", 1)[0].lower().rstrip("/")
    return f"{platform}:{fallback}"
