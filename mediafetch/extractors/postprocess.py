"""Format clean-up applied once to every successful extraction."""

from __future__ import annotations

import re
from collections import OrderedDict

from mediafetch.models.media import MediaFormat, MediaType

_HEIGHT = re.compile(r"(\d{3,4})p\b", re.I)
_DIMENSIONS = re.compile(r"(\d{3,4})x(\d{3,4})")
_TRAILING_INDEX = re.compile(r"(\d+)$")
_KEYWORDS: tuple[tuple[str, int], ...] = (
    ("4K", 2160),
    ("UHD", 2160),
    ("QHD", 1440),
    ("FULLHD", 1080),
    ("FHD", 1080),
    ("HD", 720),
    ("SD", 480),
)


def resolution_of(quality: str) -> int:
    """Best-effort vertical resolution encoded in a quality label."""
    match = _HEIGHT.search(quality)
    if match:
        return int(match.group(1))
    match = _DIMENSIONS.search(quality)
    if match:
        return min(int(match.group(1)), int(match.group(2)))
    upper = quality.upper()
    for keyword, height in _KEYWORDS:
        if keyword in upper:
            return height
    return 0


def _unique_by(formats, key) -> list[MediaFormat]:
    seen = set()
    unique = []
    for fmt in formats:
        marker = key(fmt)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(fmt)
    return unique


def dedupe(formats: list[MediaFormat]) -> list[MediaFormat]:
    """Drop repeated URLs, then repeated (quality, type, item) slots.

    The passes run one after the other: a format dropped as a URL
    duplicate never claims a slot in the second pass.
    """
    by_url = _unique_by(formats, lambda f: f.url)
    return _unique_by(by_url, lambda f: (f.quality, f.type.value, f.item_id))


def _sort_videos(group: list[MediaFormat]) -> list[MediaFormat]:
    # Videos are reordered among the slots they already occupy.
    slots = [i for i, fmt in enumerate(group) if fmt.type is MediaType.VIDEO]
    videos = sorted(
        (group[i] for i in slots), key=lambda f: resolution_of(f.quality), reverse=True
    )
    ordered = list(group)
    for slot, video in zip(slots, videos):
        ordered[slot] = video
    return ordered


def _group_index(item_id: str | None) -> int | None:
    if item_id is None:
        return None
    match = _TRAILING_INDEX.search(item_id)
    return int(match.group(1)) if match else None


def postprocess(formats: list[MediaFormat]) -> list[MediaFormat]:
    """Dedupe, order video variants best-first and order carousel items."""
    groups: OrderedDict[str | None, list[MediaFormat]] = OrderedDict()
    for fmt in dedupe(formats):
        groups.setdefault(fmt.item_id, []).append(fmt)

    keys = list(groups)
    indexes = [_group_index(key) for key in keys]
    if len(keys) > 1 and all(index is not None for index in indexes):
        keys = [key for _, key in sorted(zip(indexes, keys), key=lambda pair: pair[0])]

    ordered: list[MediaFormat] = []
    for key in keys:
        ordered.extend(_sort_videos(groups[key]))
    return ordered
