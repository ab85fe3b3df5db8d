"""Parsing helpers shared by the platform extractors."""

from __future__ import annotations

import html
import json
import re
from typing import Any

from bs4 import BeautifulSoup

from mediafetch.models.media import MediaFormat, MediaType

_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")


def decode_url(raw: str) -> str:
    """Undo JSON and HTML escaping on a URL scraped from a page."""
    url = raw.replace("\\/", "/")
    url = _UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), url)
    url = url.replace("\\", "")
    return html.unescape(url)


def decode_text(raw: str) -> str:
    """Decode a JSON string literal body (``\\n``, ``\\uXXXX`` ...)."""
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return decode_url(raw)


def quality_from_height(height: int) -> str:
    if height >= 2160:
        return f"4K {height}p"
    if height >= 1440:
        return f"QHD {height}p"
    if height >= 1080:
        return f"FHD {height}p"
    if height >= 720:
        return f"HD {height}p"
    return f"SD {height}p"


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(str(value).replace(",", "")))
    except ValueError:
        return None


def truncate(text: str | None, limit: int = 100) -> str | None:
    if not text:
        return text
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "..."


def add_format(
    formats: list[MediaFormat],
    quality: str,
    media_type: MediaType,
    url: str | None,
    **extra: Any,
) -> None:
    """Append a format unless *url* is empty or already listed."""
    if not url or any(f.url == url for f in formats):
        return
    if "format" not in extra:
        extra["format"] = guess_extension(url, media_type)
    formats.append(MediaFormat(quality=quality, type=media_type, url=url, **extra))


def guess_extension(url: str, media_type: MediaType) -> str:
    path = url.split("?", 1)[0].lower()
    match = re.search(r"\.(mp4|m4a|mp3|jpe?g|png|webp|gif|mov)$", path)
    if match:
        return match.group(1)
    format_param = re.search(r"[?&]format=(\w+)", url)
    if format_param:
        return format_param.group(1)
    return {"video": "mp4", "image": "jpg", "audio": "mp3"}[media_type.value]


def page_meta(page: str) -> dict[str, str]:
    """OpenGraph/Twitter-card metadata and ``<title>`` from an HTML page."""
    soup = BeautifulSoup(page, "html.parser")
    meta: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("property") or tag.get("name")
        content = tag.get("content")
        if key and content and (key.startswith(("og:", "twitter:")) or key == "description"):
            meta.setdefault(key, content)
    if soup.title and soup.title.string:
        meta.setdefault("title", soup.title.string.strip())
    return meta


def script_json(page: str, script_id: str) -> Any:
    """Parse the JSON body of ``<script id=script_id>``; ``None`` if absent."""
    soup = BeautifulSoup(page, "html.parser")
    tag = soup.find("script", id=script_id)
    if tag is None or not tag.string:
        return None
    try:
        return json.loads(tag.string)
    except ValueError:
        return None


def dig(data: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning ``None`` on the first missing step."""
    for step in path:
        if isinstance(data, dict):
            data = data.get(step)
        elif isinstance(data, list) and isinstance(step, int) and -len(data) <= step < len(data):
            data = data[step]
        else:
            return None
        if data is None:
            return None
    return data
