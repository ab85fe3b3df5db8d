"""Weibo posts and Weibo TV.  Every strategy needs a logged-in cookie."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from bs4 import BeautifulSoup

from mediafetch.extractors.base import ExtractionContext, Strategy, StrategyError
from mediafetch.extractors.helpers import add_format, decode_url, dig, page_meta, to_int, truncate
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import (
    Engagement,
    ExtractionResult,
    MediaFormat,
    MediaType,
    Platform,
)

logger = logging.getLogger(__name__)

TV_COMPONENT_URL = "https://weibo.com/tv/api/component"
MOBILE_STATUS_URL = "https://m.weibo.cn/statuses/show"

_TV_OID = re.compile(r"(?:tv/show/|fid=)(\d+):(\d+)")
_POST_ID_PATTERNS = (
    re.compile(r"m\.weibo\.cn/(?:status|detail)/(\d+)"),
    re.compile(r"detail/(\d+)"),
    re.compile(r"weibo\.(?:com|cn)/\d+/([A-Za-z0-9]+)"),
)
_CDN_VIDEO = re.compile(r"(?:https?:)?//f\.video\.weibocdn\.com/[^\"'\s<>\\]+\.mp4[^\"'\s<>\\]*")
_STREAM_URL = re.compile(r'"stream_url(_hd)?"\s*:\s*"([^"]+)"')
_SINAIMG = re.compile(r"https?://wx\d\.sinaimg\.cn/[^\"'\s<>]+\.(?:jpg|jpeg|png|gif)[^\"'\s<>]*", re.I)
_SIZE_SEGMENT = re.compile(r"/(?:orj|mw|thumb)\d+/|/bmiddle/|/small/|/square/")
_LABEL = re.compile(r"label=mp4_(\d+p)")
_HTML_TAG = re.compile(r"<[^>]*>")

_MOBILE_VIDEO_KEYS = (
    ("stream_url_hd", "HD"),
    ("stream_url", "SD"),
    ("mp4_720p_mp4", "720P"),
    ("mp4_hd_url", "HD (MP4)"),
    ("mp4_sd_url", "SD (MP4)"),
)


def tv_oid(url: str) -> str | None:
    match = _TV_OID.search(url)
    return f"{match.group(1)}:{match.group(2)}" if match else None


def post_id(url: str) -> str | None:
    oid = _TV_OID.search(url)
    if oid:
        return oid.group(2)
    for pattern in _POST_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def is_tv(url: str) -> bool:
    return "/tv/" in url or "video.weibo.com" in url


def _absolute(url: str) -> str:
    url = url.replace("&amp;", "&").replace("\\u0026", "&")
    return "https:" + url if url.startswith("//") else url


def _label(url: str, default: str) -> str:
    match = _LABEL.search(url)
    return match.group(1).upper() if match else default


def _result(ctx: ExtractionContext, formats: list[MediaFormat], **fields: Any) -> ExtractionResult:
    return ExtractionResult(
        success=True,
        platform=Platform.WEIBO,
        url=ctx.url,
        formats=formats,
        **fields,
    )


def _engagement(post: dict[str, Any]) -> Engagement:
    return Engagement(
        likes=to_int(post.get("attitudes_count")),
        comments=to_int(post.get("comments_count")),
        shares=to_int(post.get("reposts_count")),
    )


async def _mobile_status(ctx: ExtractionContext, status_id: str) -> dict[str, Any] | None:
    response = await ctx.fetcher.get(
        MOBILE_STATUS_URL,
        params={"id": status_id},
        headers=ctx.request_headers({"Accept": "application/json", "Referer": "https://m.weibo.cn/"}),
    )
    if response.status_code >= 400 or not response.text.startswith("{"):
        return None
    try:
        post = json.loads(response.text).get("data")
    except ValueError:
        return None
    return post if isinstance(post, dict) else None


# ---------------------------------------------------------------------------
# Weibo TV
# ---------------------------------------------------------------------------


async def tv_component(ctx: ExtractionContext) -> ExtractionResult:
    oid = tv_oid(ctx.url)
    if oid is None:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Not a Weibo TV link")
    payload = {"Component_Play_Playinfo": {"oid": oid}}
    response = await ctx.fetcher.post(
        TV_COMPONENT_URL,
        params={"page": f"/tv/show/{oid}"},
        data={"data": json.dumps(payload, separators=(",", ":"))},
        headers=ctx.request_headers(
            {
                "Content-Type": "application/x-www-form-urlencoded",
                "Referer": f"https://weibo.com/tv/show/{oid}",
                "X-Requested-With": "XMLHttpRequest",
            }
        ),
    )
    if not response.text.startswith("{"):
        # The component API answers with the login page when the cookie is stale.
        raise StrategyError(ErrorCode.CREDENTIAL_REQUIRED, "Weibo did not accept the session cookie")
    play_info = dig(json.loads(response.text), "data", "Component_Play_Playinfo") or {}

    formats: list[MediaFormat] = []
    for key, video_url in (play_info.get("urls") or {}).items():
        if isinstance(video_url, str) and video_url:
            add_format(
                formats,
                key.replace("mp4_", "").upper(),
                MediaType.VIDEO,
                _absolute(video_url),
                item_id="video",
                has_audio=True,
            )
    if not formats:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND)

    fields: dict[str, Any] = {
        "title": truncate(play_info.get("title")) or "Weibo Video",
        "author": dig(play_info, "user", "screen_name"),
        "thumbnail": _absolute(play_info["cover_image"]) if play_info.get("cover_image") else None,
    }
    status_id = post_id(ctx.url)
    if status_id:
        post = await _mobile_status(ctx, status_id)
        if post:
            fields["engagement"] = _engagement(post)
            fields["author"] = fields["author"] or dig(post, "user", "screen_name")
    return _result(ctx, formats, **fields)


async def tv_page(ctx: ExtractionContext) -> ExtractionResult:
    oid = tv_oid(ctx.url)
    if oid is None:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Not a Weibo TV link")
    page = await ctx.fetcher.get_text(f"https://weibo.com/tv/show/{oid}", headers=ctx.request_headers())
    formats: list[MediaFormat] = []
    for raw in _CDN_VIDEO.findall(page):
        video_url = _absolute(raw)
        add_format(formats, _label(video_url, "Video"), MediaType.VIDEO, video_url, item_id="video")
    title = page_meta(page).get("title", "Weibo Video")
    return _result(ctx, formats, title=truncate(re.sub(r"\s*-\s*微博视频号$", "", title)))


# ---------------------------------------------------------------------------
# Regular posts
# ---------------------------------------------------------------------------


async def mobile_api(ctx: ExtractionContext) -> ExtractionResult:
    status_id = post_id(ctx.url)
    if status_id is None:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Could not find a Weibo status id in the URL")
    post = await _mobile_status(ctx, status_id)
    if post is None:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Weibo status not found or not visible")

    formats: list[MediaFormat] = []
    thumbnail = dig(post, "page_info", "page_pic", "url")
    media = dig(post, "page_info", "media_info") or {}
    for key, quality in _MOBILE_VIDEO_KEYS:
        if media.get(key):
            add_format(formats, quality, MediaType.VIDEO, media[key], item_id="video", thumbnail=thumbnail)
    for i, pic in enumerate(post.get("pics") or []):
        image_url = dig(pic, "large", "url") or pic.get("url")
        if image_url:
            thumbnail = thumbnail or image_url
            add_format(formats, f"Image {i + 1}", MediaType.IMAGE, image_url, item_id=f"img-{i}", thumbnail=image_url)

    text = _HTML_TAG.sub("", post.get("text") or "").strip()
    return _result(
        ctx,
        formats,
        title=truncate(text) or "Weibo Post",
        description=text or None,
        thumbnail=thumbnail,
        author=dig(post, "user", "screen_name"),
        posted_at=post.get("created_at"),
        engagement=_engagement(post),
    )


async def mobile_page(ctx: ExtractionContext) -> ExtractionResult:
    url = ctx.url if "m.weibo.cn" in ctx.url else ctx.url.replace("weibo.com", "m.weibo.cn")
    page = await ctx.fetcher.get_text(url, headers=ctx.request_headers())
    decoded = page.replace("&amp;", "&").replace("\\u0026", "&")
    formats: list[MediaFormat] = []

    soup = BeautifulSoup(page, "html.parser")
    video = soup.find("video")
    src = None
    if video is not None:
        source = video.find("source")
        src = video.get("src") or (source.get("src") if source is not None else None)
    if src:
        video_url = _absolute(src)
        add_format(formats, _label(video_url, "HD"), MediaType.VIDEO, video_url, item_id="video")

    for raw in _CDN_VIDEO.findall(decoded):
        video_url = _absolute(raw)
        add_format(formats, _label(video_url, "Video"), MediaType.VIDEO, video_url, item_id="video")
    for hd, raw in _STREAM_URL.findall(decoded):
        add_format(formats, "HD" if hd else "SD", MediaType.VIDEO, _absolute(decode_url(raw)), item_id="video")

    images: list[str] = []
    for raw in _SINAIMG.findall(decoded):
        large = _SIZE_SEGMENT.sub("/large/", raw)
        if not re.search(r"avatar|icon|emoticon", large, re.I) and large not in images:
            images.append(large)
    for i, image_url in enumerate(images):
        add_format(formats, f"Image {i + 1}", MediaType.IMAGE, image_url, item_id=f"img-{i}", thumbnail=image_url)

    meta = page_meta(page)
    title = meta.get("og:title") or re.sub(r" \| .+$", "", meta.get("title", "")).strip()
    thumbnail = images[0].replace("/large/", "/mw690/") if images else meta.get("og:image")
    return _result(ctx, formats, title=truncate(title) or "Weibo Post", thumbnail=thumbnail)


TV_STRATEGIES = [
    Strategy("tv_component", tv_component, accepts_credential=True, requires_credential=True),
    Strategy("tv_page", tv_page, accepts_credential=True, requires_credential=True),
]

POST_STRATEGIES = [
    Strategy("mobile_api", mobile_api, accepts_credential=True, requires_credential=True),
    Strategy("mobile_page", mobile_page, accepts_credential=True, requires_credential=True),
]
