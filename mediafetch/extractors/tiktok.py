"""TikTok: the TikWM API, then the web page's rehydration JSON."""

from __future__ import annotations

import logging
from typing import Any

from mediafetch.extractors.base import ExtractionContext, Strategy, StrategyError
from mediafetch.extractors.helpers import (
    add_format,
    dig,
    quality_from_height,
    script_json,
    to_int,
    truncate,
)
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import (
    Engagement,
    ExtractionResult,
    MediaFormat,
    MediaType,
    Platform,
)

logger = logging.getLogger(__name__)

TIKWM_URL = "https://tikwm.com/api/"
_TIKWM_HOST = "https://www.tikwm.com"
_REHYDRATION_ID = "__UNIVERSAL_DATA_FOR_REHYDRATION__"
# statusCode values the web app uses for removed or private posts
_UNAVAILABLE_STATUS = {10204, 10216, 10222}


def _absolute(url: str | None) -> str | None:
    if url and url.startswith("/"):
        return _TIKWM_HOST + url
    return url


async def tikwm(ctx: ExtractionContext) -> ExtractionResult:
    payload = await ctx.fetcher.get_json(
        TIKWM_URL,
        params={"url": ctx.url, "hd": 1},
        headers=ctx.request_headers({"Accept": "application/json"}, with_cookie=False),
    )
    if not isinstance(payload, dict):
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, "Unexpected TikWM response")
    data = payload.get("data")
    if payload.get("code") != 0 or not data:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, payload.get("msg") or None)

    formats: list[MediaFormat] = []
    images = data.get("images") or []
    if images:
        for i, image in enumerate(images):
            add_format(formats, f"Image {i + 1}", MediaType.IMAGE, image, item_id=f"img-{i}", thumbnail=image)
    else:
        hd_url, sd_url = _absolute(data.get("hdplay")), _absolute(data.get("play"))
        if hd_url and sd_url and hd_url != sd_url:
            hd_size = data.get("hd_size") or data.get("size") or 0
            if hd_size < (data.get("wm_size") or 0):
                hd_url, sd_url = sd_url, hd_url
            add_format(formats, "HD (No Watermark)", MediaType.VIDEO, hd_url, item_id="video", has_audio=True)
            add_format(formats, "SD (No Watermark)", MediaType.VIDEO, sd_url, item_id="video", has_audio=True)
        elif hd_url or sd_url:
            quality = "HD (No Watermark)" if hd_url else "Video (No Watermark)"
            add_format(formats, quality, MediaType.VIDEO, hd_url or sd_url, item_id="video", has_audio=True)
    music = _absolute(data.get("music") or dig(data, "music_info", "play"))
    if music:
        add_format(formats, "Audio", MediaType.AUDIO, music, item_id="audio", format="mp3")

    return ExtractionResult(
        success=True,
        platform=Platform.TIKTOK,
        url=ctx.url,
        title=truncate(data.get("title")) or "TikTok Video",
        description=data.get("title"),
        thumbnail=_absolute(data.get("cover") or data.get("origin_cover")),
        author=dig(data, "author", "unique_id"),
        author_name=dig(data, "author", "nickname"),
        posted_at=str(data["create_time"]) if data.get("create_time") else None,
        formats=formats,
        engagement=Engagement(
            views=to_int(data.get("play_count")),
            likes=to_int(data.get("digg_count")),
            comments=to_int(data.get("comment_count")),
            shares=to_int(data.get("share_count")),
            bookmarks=to_int(data.get("collect_count")),
        ),
    )


def _item_struct(page: str) -> dict[str, Any]:
    blob = script_json(page, _REHYDRATION_ID)
    detail = dig(blob, "__DEFAULT_SCOPE__", "webapp.video-detail") or {}
    if detail.get("statusCode") in _UNAVAILABLE_STATUS:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT)
    item = dig(detail, "itemInfo", "itemStruct")
    if not item:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "No rehydration data on page")
    return item


async def web_page(ctx: ExtractionContext) -> ExtractionResult:
    page = await ctx.fetcher.get_text(ctx.url, headers=ctx.request_headers())
    item = _item_struct(page)

    formats: list[MediaFormat] = []
    video = item.get("video") or {}
    images = dig(item, "imagePost", "images") or []
    for i, image in enumerate(images):
        url = dig(image, "imageURL", "urlList", 0)
        add_format(formats, f"Image {i + 1}", MediaType.IMAGE, url, item_id=f"img-{i}", thumbnail=url)
    if not images:
        for bitrate in video.get("bitrateInfo") or []:
            url = dig(bitrate, "PlayAddr", "UrlList", 0)
            height = to_int(dig(bitrate, "PlayAddr", "Height")) or 0
            if url and height:
                add_format(formats, quality_from_height(height), MediaType.VIDEO, url, item_id="video", has_audio=True)
        height = to_int(video.get("height")) or 0
        play = video.get("playAddr") or video.get("downloadAddr")
        if play:
            label = quality_from_height(height) if height else "Video"
            add_format(formats, label, MediaType.VIDEO, play, item_id="video", has_audio=True)
    music = dig(item, "music", "playUrl")
    if music:
        add_format(formats, "Audio", MediaType.AUDIO, music, item_id="audio", format="mp3")

    stats = item.get("stats") or {}
    return ExtractionResult(
        success=True,
        platform=Platform.TIKTOK,
        url=ctx.url,
        title=truncate(item.get("desc")) or "TikTok Video",
        description=item.get("desc"),
        thumbnail=video.get("cover") or video.get("originCover"),
        author=dig(item, "author", "uniqueId"),
        author_name=dig(item, "author", "nickname"),
        posted_at=str(item["createTime"]) if item.get("createTime") else None,
        formats=formats,
        engagement=Engagement(
            views=to_int(stats.get("playCount")),
            likes=to_int(stats.get("diggCount")),
            comments=to_int(stats.get("commentCount")),
            shares=to_int(stats.get("shareCount")),
            bookmarks=to_int(stats.get("collectCount")),
        ),
    )


STRATEGIES = [
    Strategy("tikwm", tikwm),
    Strategy("web_page", web_page, accepts_credential=True),
]
