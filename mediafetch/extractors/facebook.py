"""Facebook posts, videos, reels and stories.

Facebook serves everything as one large HTML document with the GraphQL
payload inlined, so extraction is pattern matching over the page.  The
guest fetch runs first; the same parser runs again with a cookie when the
guest view is gated.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from mediafetch.extractors.base import ExtractionContext, Strategy, StrategyError
from mediafetch.extractors.helpers import decode_text, decode_url, page_meta, truncate
from mediafetch.models.credential import CredentialOutcome
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import (
    Engagement,
    ExtractionResult,
    MediaFormat,
    MediaType,
    Platform,
)

logger = logging.getLogger(__name__)

# _nc_sid values Facebook uses for UI chrome, avatars and suggested content.
SKIP_SIDS = (
    "bd9a62", "23dd7b", "50ce42", "9a7156", "1d2534", "e99d92", "a6c039",
    "72b077", "ba09c1", "f4d7c3", "0f7a8c", "3c5e9a", "d41d8c",
)
_SKIP_IMAGE = re.compile(
    r"emoji|sticker|static|rsrc|profile|avatar|/cp0/|/[ps]\d+x\d+/|_s\d+x\d+|\.webp\?", re.I
)
_THUMBNAIL_SIZE = re.compile(r"/[ps]\d{2,3}x\d{2,3}/|/cp0/")
_CDN = re.compile(r"scontent|fbcdn")

AGE_RESTRICTED_MARKERS = (
    "You must be 18 years or older",
    "age-restricted",
    "AdultContentWarning",
    '"is_adult_content":true',
    "content_age_gate",
)
PRIVATE_MARKERS = (
    "This content isn't available",
    "content isn't available right now",
    "Sorry, this content isn't available",
    "The link you followed may be broken",
)
_MEDIA_MARKERS = ("browser_native", "all_subattachments", "viewer_image", "playable_url")
_LOGIN_MARKERS = ("login_form", "Log in to Facebook")
_PRIVATE_SCAN_LIMIT = 50_000

_VIDEO_ID = re.compile(r"/(?:reel|videos?)/(\d+)|[?&]v=(\d+)")
_POST_ID_PATTERNS = (
    re.compile(r"/posts/(pfbid[a-zA-Z0-9]+)"),
    re.compile(r"/posts/(\d+)"),
    re.compile(r"/permalink/(\d+)"),
    re.compile(r"story_fbid=(pfbid[a-zA-Z0-9]+)"),
    re.compile(r"story_fbid=(\d+)"),
    re.compile(r"/photos?/[^/]+/(\d+)"),
    re.compile(r"fbid=(\d+)"),
)

_AUTHOR_PATTERNS = (
    re.compile(r'"name":"([^"]+)","enable_reels_tab_deeplink":true'),
    re.compile(r'"owning_profile":\{"__typename":"(?:User|Page)","name":"([^"]+)"'),
    re.compile(r'"owner":\{"__typename":"(?:User|Page)"[^}]*"name":"([^"]+)"'),
    re.compile(r'"actors":\[\{"__typename":"User","name":"([^"]+)"'),
)
_DESCRIPTION_PATTERNS = (
    re.compile(r'"message":\{"text":"((?:[^"\\]|\\.)+)"'),
    re.compile(r'"content":\{"text":"((?:[^"\\]|\\.)+)"'),
    re.compile(r'"caption":"((?:[^"\\]|\\.)+)"'),
)
_CREATION_TIME = re.compile(r'"(?:creation|created|publish)_time":(\d{10})')
_NON_AUTHOR_SEGMENTS = {"watch", "reel", "share", "groups", "www", "web", "stories", "photo", "permalink.php", "story.php"}


def is_skip_image(url: str) -> bool:
    return any(f"_nc_sid={sid}" in url for sid in SKIP_SIDS) or bool(_SKIP_IMAGE.search(url))


def _clean(url: str) -> str:
    return url.replace("\\/", "/").replace("\\u0026", "&").replace("&amp;", "&")


def detect_content_type(url: str) -> str:
    if "/stories/" in url:
        return "story"
    if re.search(r"/reel/|/share/r/", url):
        return "reel"
    if re.search(r"/videos?/|/watch/?|/share/v/|[?&]v=\d", url):
        return "video"
    if "/groups/" in url:
        return "group"
    if re.search(r"/posts/|/photos?/|permalink|/share/p/|story_fbid|fbid=", url):
        return "post"
    return "unknown"


def detect_content_issue(page: str) -> ErrorCode | None:
    """Age gate or removed-content notice, ignored when media is present."""
    if any(marker in page for marker in _MEDIA_MARKERS):
        return None
    lower = page.lower()
    if any(marker.lower() in lower for marker in AGE_RESTRICTED_MARKERS):
        return ErrorCode.AGE_RESTRICTED
    head = page[:_PRIVATE_SCAN_LIMIT]
    if any(marker in head for marker in PRIVATE_MARKERS):
        return ErrorCode.PRIVATE_CONTENT
    return None


def _video_id(url: str) -> str | None:
    match = _VIDEO_ID.search(url)
    return (match.group(1) or match.group(2)) if match else None


def _post_id(url: str) -> str | None:
    for pattern in _POST_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def _area_around(page: str, markers: list[str], before: int, after: int, limit: int) -> str:
    for marker in markers:
        pos = page.find(marker)
        if pos > -1:
            return page[max(0, pos - before): pos + after]
    return page[:limit]


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------

_VIDEO_METHODS = (
    (re.compile(r'"browser_native_hd_url":"([^"]+)"'), re.compile(r'"browser_native_sd_url":"([^"]+)"')),
    (re.compile(r'"playable_url_quality_hd":"([^"]+)"'), re.compile(r'"playable_url":"([^"]+)"')),
    (re.compile(r'"hd_src(?:_no_ratelimit)?":"([^"]+)"'), re.compile(r'"sd_src(?:_no_ratelimit)?":"([^"]+)"')),
)
_DASH = re.compile(r'"height":(\d+)[^}]*?"base_url":"(https:[^"]+\.mp4[^"]*)"')
_PROGRESSIVE = re.compile(r'"progressive_url":"(https:\\?/\\?/[^"]+)"')
_VIDEO_THUMB = re.compile(
    r'"(?:previewImage|thumbnailImage|poster_image|preferred_thumbnail)"[^}]*?"uri":"(https:[^"]+)"'
)


def _valid_video(url: str) -> bool:
    return ".mp4" in url or (len(url) > 30 and bool(_CDN.search(url)) and "<" not in url)


def extract_videos(page: str, video_id: str | None) -> list[MediaFormat]:
    markers = []
    if video_id:
        markers += [f'"id":"{video_id}"', f'"video_id":"{video_id}"', f"/videos/{video_id}", f"/reel/{video_id}"]
    markers += ['"browser_native_hd_url":', '"playable_url_quality_hd":', '"playable_url":', '"progressive_url":']
    area = _area_around(page, markers, 2000, 12000, 80_000)

    thumb_match = _VIDEO_THUMB.search(area)
    thumbnail = _clean(thumb_match.group(1)) if thumb_match and _CDN.search(thumb_match.group(1)) else None
    found: dict[str, str] = {}

    def add(quality: str, url: str) -> None:
        if quality not in found and url not in found.values() and _valid_video(url):
            found[quality] = url

    for hd_pattern, sd_pattern in _VIDEO_METHODS:
        for quality, pattern in (("HD", hd_pattern), ("SD", sd_pattern)):
            match = pattern.search(area) or pattern.search(page)
            if match:
                add(quality, decode_url(match.group(1)))
        if found:
            break

    if not found:
        dash = sorted(
            ((int(h), decode_url(u)) for h, u in _DASH.findall(area) if int(h) >= 360),
            reverse=True,
        )
        hd = next((u for h, u in dash if h >= 720), None)
        sd = next((u for h, u in dash if h < 720), None)
        if hd:
            add("HD", hd)
        if sd:
            add("SD", sd)

    if not found:
        for raw in _PROGRESSIVE.findall(area):
            url = decode_url(raw)
            if re.search(r"\.mp4|(?:scontent|fbcdn).*/v/", url):
                quality = "HD" if re.search(r"720|1080|_hd", url, re.I) or not found else "SD"
                add(quality, url)
            if len(found) >= 2:
                break

    return [
        MediaFormat(
            quality=quality,
            type=MediaType.VIDEO,
            url=url,
            format="mp4",
            item_id="video",
            thumbnail=thumbnail,
            has_audio=True,
        )
        for quality, url in found.items()
    ]


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

_VIEWER_IMAGE = re.compile(r'"viewer_image":\{"height":(\d+),"width":(\d+),"uri":"(https:[^"]+)"')
_PHOTO_IMAGE = re.compile(r'"photo_image":\{"uri":"(https:[^"]+)"')
_PRELOAD = re.compile(r'<link[^>]+rel="preload"[^>]+href="(https://scontent[^"]+_nc_sid=127cfc[^"]+)"', re.I)
_IMAGE_URI = re.compile(r'"image":\{"uri":"(https:[^"]+t39\.30808[^"]+)"')
_T39 = re.compile(r"https://scontent[^\"'\s<>\\]+t39\.30808-6[^\"'\s<>\\]+\.jpg", re.I)
_SUBATTACHMENTS = '"all_subattachments":{"count":'


class _ImageCollector:
    def __init__(self) -> None:
        self.formats: list[MediaFormat] = []
        self._paths: set[str] = set()

    def add(self, url: str) -> bool:
        path = url.split("?", 1)[0]
        if is_skip_image(url) or path in self._paths or "t39.30808-1/" in url:
            return False
        self._paths.add(path)
        index = len(self.formats) + 1
        self.formats.append(
            MediaFormat(
                quality=f"Image {index}",
                type=MediaType.IMAGE,
                url=url,
                format="jpg",
                item_id=f"img-{index}",
                thumbnail=url,
            )
        )
        return True


def _post_area(page: str, post_id: str | None) -> str:
    starts = [p for p in (page.find('"comet_sections"'), page.find('"creation_story"')) if p > -1]
    main = min(starts) if starts else -1
    sub = page.find(_SUBATTACHMENTS, main) if main > -1 else -1
    if sub == -1:
        sub = page.find(_SUBATTACHMENTS)
    if sub > -1:
        end = page.find('"all_subattachments":', sub + 30)
        if end == -1 or end - sub > 30_000:
            end = sub + 25_000
        return page[max(0, sub - 500): end]
    if main > -1:
        return page[main: main + 100_000]
    markers = [f"/posts/{post_id}", f"story_fbid={post_id}", f'"post_id":"{post_id}"'] if post_id else []
    return _area_around(page, markers, 5000, 20_000, 100_000)


def _nodes_block(area: str) -> tuple[str, int] | None:
    start = area.find(_SUBATTACHMENTS)
    if start == -1:
        return None
    count_match = re.match(r'"all_subattachments":\{"count":(\d+)', area[start:])
    expected = int(count_match.group(1)) if count_match else 0
    nodes = area.find('"nodes":[', start)
    if nodes == -1 or nodes - start > 100:
        return None
    depth = 0
    for i in range(nodes + 8, min(len(area), nodes + 30_000)):
        if area[i] == "[":
            depth += 1
        elif area[i] == "]":
            depth -= 1
            if depth == 0:
                return area[nodes: i + 1], expected
    return area[nodes:], expected


def extract_images(page: str, post_id: str | None) -> list[MediaFormat]:
    collector = _ImageCollector()
    area = _post_area(page, post_id)

    block = _nodes_block(area)
    if block:
        nodes, _expected = block
        for _h, _w, raw in _VIEWER_IMAGE.findall(nodes):
            url = _clean(raw)
            if _CDN.search(url) and re.search(r"t39\.30808|t51\.82787", url):
                collector.add(url)
        if collector.formats:
            return collector.formats

    candidates = []
    for height, width, raw in _VIEWER_IMAGE.findall(area):
        url = _clean(raw)
        if (
            int(height) >= 400
            and int(width) >= 400
            and _CDN.search(url)
            and re.search(r"t39\.30808|t51\.82787", url)
            and not _THUMBNAIL_SIZE.search(url)
        ):
            candidates.append((int(height) * int(width), url))
    seen_bases: set[str] = set()
    for _size, url in sorted(candidates, key=lambda c: c[0], reverse=True):
        base = re.sub(r"_n\.jpg$", "", url.split("?", 1)[0])
        if base not in seen_bases:
            seen_bases.add(base)
            collector.add(url)
    if collector.formats:
        return collector.formats

    for raw in _PHOTO_IMAGE.findall(area)[:5]:
        url = _clean(raw)
        if _CDN.search(url) and "t39.30808-6" in url:
            collector.add(url)
    if collector.formats:
        return collector.formats

    preload = _PRELOAD.search(page)
    if preload:
        collector.add(_clean(preload.group(1)))
        return collector.formats

    for raw in _IMAGE_URI.findall(page):
        url = _clean(raw)
        if _CDN.search(url) and not _THUMBNAIL_SIZE.search(url):
            collector.add(url)
        if len(collector.formats) >= 3:
            break
    if collector.formats:
        return collector.formats

    for raw in _T39.findall(area):
        url = decode_url(raw)
        if not re.search(r"/[ps]\d{2,3}x\d{2,3}/|/cp0/|_s\d+x\d+|/s\d{2,3}x\d{2,3}/", url):
            collector.add(url)
        if len(collector.formats) >= 5:
            break
    return collector.formats


# ---------------------------------------------------------------------------
# Stories
# ---------------------------------------------------------------------------

_STORY_VIDEO = re.compile(
    r'"progressive_url":"(https:[^"]+\.mp4[^"]*)","failure_reason":null,"metadata":\{"quality":"(HD|SD)"\}'
)
_STORY_VIDEO_FALLBACK = re.compile(r'"progressive_url":"(https:[^"]+\.mp4[^"]*)"')
_STORY_THUMB = re.compile(r'"(?:previewImage|story_thumbnail|poster_image)":\{"uri":"(https:[^"]+)"')
_STORY_IMAGE = re.compile(r"https://scontent[^\"'\s<>\\]+t51\.82787[^\"'\s<>\\]+\.jpg[^\"'\s<>\\]*", re.I)


@dataclass
class _StoryVideo:
    url: str
    hd: bool


def extract_stories(page: str) -> list[MediaFormat]:
    videos: list[_StoryVideo] = []
    seen: set[str] = set()
    for raw, quality in _STORY_VIDEO.findall(page):
        url = decode_url(raw)
        if url not in seen:
            seen.add(url)
            videos.append(_StoryVideo(url, quality == "HD"))
    if not videos:
        for raw in _STORY_VIDEO_FALLBACK.findall(page):
            url = decode_url(raw)
            if url not in seen:
                seen.add(url)
                videos.append(_StoryVideo(url, bool(re.search(r"720p|1080p|_hd", url))))

    thumbs: list[str] = []
    for raw in _STORY_THUMB.findall(page):
        url = _clean(raw)
        if _CDN.search(url) and url not in thumbs:
            thumbs.append(url)

    # Each story usually ships as an HD/SD pair; keep the best of each pair.
    if any(v.hd for v in videos) and any(not v.hd for v in videos):
        picked = []
        for i in range(0, len(videos), 2):
            pair = videos[i: i + 2]
            picked.append(next((v for v in pair if v.hd), pair[0]))
    else:
        picked = videos

    formats = [
        MediaFormat(
            quality=f"Story {i + 1}",
            type=MediaType.VIDEO,
            url=video.url,
            format="mp4",
            item_id=f"story-{i + 1}",
            thumbnail=thumbs[i] if i < len(thumbs) else None,
            has_audio=True,
        )
        for i, video in enumerate(picked)
    ]

    images: list[str] = []
    for raw in _STORY_IMAGE.findall(page):
        url = _clean(decode_url(raw))
        if re.search(r"s(?:1080|1440|2048)x", url) and url not in seen and url not in images:
            images.append(url)
    offset = len(formats)
    for i, url in enumerate(images):
        formats.append(
            MediaFormat(
                quality=f"Story Image {i + 1}",
                type=MediaType.IMAGE,
                url=url,
                format="jpg",
                item_id=f"story-{offset + i + 1}",
                thumbnail=url,
            )
        )
    return formats


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def extract_author(page: str, url: str) -> str:
    for pattern in _AUTHOR_PATTERNS:
        match = pattern.search(page)
        if match:
            name = decode_text(match.group(1))
            if name != "Facebook" and not re.fullmatch(r"User|Page|Video|Photo|Post", name, re.I):
                return name
    segment = re.search(r"facebook\.com/([^/?]+)", url)
    if segment and segment.group(1) not in _NON_AUTHOR_SEGMENTS:
        return segment.group(1)
    return "Facebook"


def extract_description(page: str) -> str | None:
    for pattern in _DESCRIPTION_PATTERNS:
        match = pattern.search(page)
        if match and len(match.group(1)) > 2:
            return decode_text(match.group(1))
    return None


def _count(value: str) -> int:
    number = float(value.replace(",", "").rstrip("KkMm") or 0)
    if value[-1:] in "Kk":
        number *= 1_000
    elif value[-1:] in "Mm":
        number *= 1_000_000
    return round(number)


def extract_engagement(page: str) -> Engagement:
    def first(*patterns: str) -> int | None:
        for pattern in patterns:
            match = re.search(pattern, page)
            if match:
                return _count(match.group(1))
        return None

    return Engagement(
        likes=first(r'"reaction_count":\{"count":(\d+)', r'"i18n_reaction_count":"([\d,.KMkm]+)"'),
        comments=first(r'"comment_count":\{"total_count":(\d+)', r'"comments":\{"total_count":(\d+)'),
        shares=first(r'"share_count":\{"count":(\d+)', r'"reshares":\{"count":(\d+)'),
        views=first(r'"video_view_count":(\d+)', r'"play_count":(\d+)'),
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


async def _fetch_page(ctx: ExtractionContext, with_cookie: bool) -> tuple[str, str]:
    response = await ctx.fetcher.get(ctx.url, headers=ctx.request_headers(with_cookie=with_cookie))
    final_url = str(response.url)
    if "/checkpoint/" in final_url:
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "Facebook account needs a security checkpoint",
            credential_outcome=CredentialOutcome.EXPIRED if with_cookie else None,
        )
    if response.status_code == 429:
        raise StrategyError(ErrorCode.RATE_LIMITED, credential_outcome=CredentialOutcome.RATE_LIMITED)
    if response.status_code >= 400 and response.status_code != 404:
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, f"Facebook HTTP {response.status_code}")
    return response.text, final_url


def _check_gates(page: str, with_cookie: bool) -> ErrorCode | None:
    if len(page) < 10_000 and "Sorry, something went wrong" in page:
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, "Facebook returned an error page")
    has_media = any(marker in page for marker in _MEDIA_MARKERS[:3])
    if not has_media and len(page) < 500_000 and any(m in page for m in _LOGIN_MARKERS):
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "This content requires login.",
            credential_outcome=CredentialOutcome.EXPIRED if with_cookie else None,
        )
    issue = detect_content_issue(page)
    if issue and not with_cookie:
        raise StrategyError(issue)
    return issue


def _build_result(ctx: ExtractionContext, page: str, final_url: str, formats: list[MediaFormat]) -> ExtractionResult:
    decoded = html_lib.unescape(page)
    meta = page_meta(page)
    title = re.sub(r"^[\d.]+K?\s*views.*?\|\s*", "", meta.get("og:title") or meta.get("title") or "Facebook Post", flags=re.I)
    description = extract_description(decoded)
    if title in ("Facebook", "Facebook Post") and description:
        title = truncate(description, 80)
    created = _CREATION_TIME.search(decoded)
    return ExtractionResult(
        success=True,
        platform=Platform.FACEBOOK,
        url=ctx.url,
        title=truncate(title),
        description=description,
        thumbnail=meta.get("og:image") or next((f.thumbnail for f in formats if f.thumbnail), None),
        author=extract_author(decoded, final_url),
        posted_at=(
            datetime.fromtimestamp(int(created.group(1)), tz=timezone.utc).isoformat() if created else None
        ),
        formats=formats,
        engagement=extract_engagement(decoded),
    )


async def _scrape(ctx: ExtractionContext, with_cookie: bool) -> ExtractionResult:
    page, final_url = await _fetch_page(ctx, with_cookie)
    issue = _check_gates(page, with_cookie)
    decoded = html_lib.unescape(page)
    content_type = detect_content_type(final_url)

    formats: list[MediaFormat] = []
    if content_type in ("video", "reel"):
        formats = extract_videos(decoded, _video_id(final_url))
    if not formats and content_type != "story":
        formats = extract_images(decoded, _post_id(final_url))
    if not formats:
        raise StrategyError(issue or ErrorCode.NO_MEDIA_FOUND)
    return _build_result(ctx, page, final_url, formats)


async def page_guest(ctx: ExtractionContext) -> ExtractionResult:
    return await _scrape(ctx, with_cookie=False)


async def page_authenticated(ctx: ExtractionContext) -> ExtractionResult:
    return await _scrape(ctx, with_cookie=True)


async def story_page(ctx: ExtractionContext) -> ExtractionResult:
    page, final_url = await _fetch_page(ctx, with_cookie=True)
    _check_gates(page, with_cookie=True)
    formats = extract_stories(html_lib.unescape(page))
    if not formats:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Story has expired or is not visible to this account")
    result = _build_result(ctx, page, final_url, formats)
    result.title = f"{result.author}'s Story"
    return result


POST_STRATEGIES = [
    Strategy("page_guest", page_guest),
    Strategy("page_authenticated", page_authenticated, accepts_credential=True, requires_credential=True),
]

STORY_STRATEGIES = [
    Strategy("story_page", story_page, accepts_credential=True, requires_credential=True),
]
