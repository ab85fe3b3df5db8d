"""Cookie parsing and validation.

Operators paste cookies either as a ``name=value; name2=value2`` header
string or as the JSON array exported by browser cookie-editor extensions.
Both are stored as the header string.
"""

from __future__ import annotations

import json
from typing import Any

_DOMAINS: dict[str, tuple[str, ...]] = {
    "facebook": ("facebook.com", "fb.com"),
    "instagram": ("instagram.com",),
    "weibo": ("weibo.com", "weibo.cn"),
    "twitter": ("twitter.com", "x.com"),
    "tiktok": ("tiktok.com",),
}

REQUIRED_COOKIES: dict[str, tuple[str, ...]] = {
    "facebook": ("c_user", "xs"),
    "instagram": ("sessionid",),
    "weibo": ("SUB",),
    "twitter": ("auth_token",),
}

_USER_ID_COOKIES: dict[str, str] = {
    "facebook": "c_user",
    "instagram": "ds_user_id",
    "weibo": "SUB",
}


class InvalidCookieError(ValueError):
    """Raised when cookie input is empty, malformed or missing session cookies."""


def _pairs_from_json(items: list[Any], platform: str | None) -> list[tuple[str, str]]:
    domains = _DOMAINS.get(platform or "", ())
    pairs = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name") or not item.get("value"):
            continue
        domain = str(item.get("domain") or "").lower().lstrip(".")
        if domain and domains and not any(domain.endswith(d) for d in domains):
            continue
        pairs.append((str(item["name"]), str(item["value"])))
    return pairs


def parse_pairs(cookie: str) -> dict[str, str]:
    """Split a ``name=value; ...`` header into a dict (later names win)."""
    pairs: dict[str, str] = {}
    for chunk in cookie.split(";"):
        name, sep, value = chunk.strip().partition("=")
        if name and sep:
            pairs[name.strip()] = value.strip()
    return pairs


def parse_cookie(raw: str | list[Any], platform: str | None = None) -> str:
    """Normalize operator input to a cookie header string."""
    if isinstance(raw, list):
        pairs = _pairs_from_json(raw, platform)
    else:
        text = (raw or "").strip()
        if not text:
            raise InvalidCookieError("Cookie is empty")
        if not text.startswith("["):
            return text
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidCookieError(f"Malformed cookie JSON: {exc}") from exc
        pairs = _pairs_from_json(items if isinstance(items, list) else [], platform)
    if not pairs:
        raise InvalidCookieError("No name/value pairs found in cookie")
    return "; ".join(f"{name}={value}" for name, value in pairs)


def validate_cookie(cookie: str, platform: str) -> list[str]:
    """Return the session cookie names *cookie* lacks for *platform*."""
    present = parse_pairs(cookie)
    return [name for name in REQUIRED_COOKIES.get(platform, ()) if name not in present]


def cookie_value(cookie: str | None, name: str) -> str | None:
    if not cookie:
        return None
    return parse_pairs(cookie).get(name)


def cookie_user_id(cookie: str, platform: str) -> str | None:
    name = _USER_ID_COOKIES.get(platform)
    if name:
        return cookie_value(cookie, name)
    if platform == "twitter":
        twid = cookie_value(cookie, "twid") or ""
        return twid.split("u%3D", 1)[1] if "u%3D" in twid else None
    return None
