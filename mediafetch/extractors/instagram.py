"""Instagram posts, reels and stories.

Posts go through the public GraphQL query first, then the embed page,
and finally the same GraphQL query with a logged-in cookie.  Stories are
only served to logged-in sessions.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from mediafetch.extractors.base import ExtractionContext, Strategy, StrategyError
from mediafetch.extractors.helpers import (
    add_format,
    decode_url,
    dig,
    quality_from_height,
    to_int,
    truncate,
)
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

GRAPHQL_URL = "https://www.instagram.com/graphql/query/"
GRAPHQL_DOC_ID = "8845758582119845"
PROFILE_URL = "https://www.instagram.com/api/v1/users/web_profile_info/"
REELS_MEDIA_URL = "https://www.instagram.com/api/v1/feed/reels_media/"
APP_ID = "936619743392459"

_SHORTCODE = re.compile(r"/(?:p|reel|reels|tv)/([A-Za-z0-9_-]+)")
_STORY = re.compile(r"/stories/([^/?#]+)/(\d+)")
_EMBED_VIDEO = re.compile(r'"video_url":"([^"]+)"')
_EMBED_IMAGE = re.compile(r'"display_url":"([^"]+)"')
_EMBED_OWNER = re.compile(r'"owner":\{[^}]*?"username":"([^"]+)"')
_EMBED_IMG_TAG = re.compile(r'class="EmbeddedMediaImage"[^>]*src="([^"]+)"')


def _api_headers(ctx: ExtractionContext, with_cookie: bool) -> dict[str, str]:
    return ctx.request_headers(
        {
            "Accept": "*/*",
            "X-IG-App-ID": APP_ID,
            "X-Requested-With": "XMLHttpRequest",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
        },
        with_cookie=with_cookie,
    )


def _shortcode(url: str) -> str:
    match = _SHORTCODE.search(url)
    if not match:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Could not find a post id in the URL")
    return match.group(1)


def _best_image(node: dict[str, Any]) -> str | None:
    resources = node.get("display_resources") or []
    if resources:
        return resources[-1].get("src") or node.get("display_url")
    return node.get("display_url")


def parse_graphql_media(media: dict[str, Any], url: str) -> ExtractionResult:
    formats: list[MediaFormat] = []
    author = dig(media, "owner", "username")
    caption = dig(media, "edge_media_to_caption", "edges", 0, "node", "text")
    children = dig(media, "edge_sidecar_to_children", "edges") or []

    if children:
        for i, edge in enumerate(children):
            node = edge.get("node") or {}
            common = {
                "item_id": f"slide-{i}",
                "thumbnail": node.get("display_url"),
                "filename": f"{author or 'instagram'}_slide_{i + 1}",
            }
            if node.get("is_video") and node.get("video_url"):
                add_format(formats, f"Video {i + 1}", MediaType.VIDEO, node["video_url"], has_audio=True, **common)
            else:
                add_format(formats, f"Image {i + 1}", MediaType.IMAGE, _best_image(node), **common)
    elif media.get("is_video") and media.get("video_url"):
        height = to_int(dig(media, "dimensions", "height"))
        add_format(
            formats,
            quality_from_height(height) if height else "Video",
            MediaType.VIDEO,
            media["video_url"],
            thumbnail=media.get("display_url"),
            has_audio=media.get("has_audio"),
        )
    else:
        add_format(formats, "Original", MediaType.IMAGE, _best_image(media), thumbnail=media.get("display_url"))

    taken_at = media.get("taken_at_timestamp")
    return ExtractionResult(
        success=True,
        platform=Platform.INSTAGRAM,
        url=url,
        title=truncate(caption, 80) or "Instagram Post",
        description=caption,
        thumbnail=media.get("display_url") or dig(children, 0, "node", "display_url"),
        author=f"@{author}" if author else None,
        author_name=dig(media, "owner", "full_name"),
        posted_at=(
            datetime.fromtimestamp(taken_at, tz=timezone.utc).isoformat() if taken_at else None
        ),
        formats=formats,
        engagement=Engagement(
            views=to_int(media.get("video_view_count")),
            likes=to_int(dig(media, "edge_media_preview_like", "count")),
            comments=to_int(dig(media, "edge_media_to_comment", "count")),
        ),
    )


async def _query_graphql(ctx: ExtractionContext, with_cookie: bool) -> ExtractionResult:
    shortcode = _shortcode(ctx.url)
    variables = {
        "shortcode": shortcode,
        "fetch_tagged_user_count": None,
        "hoisted_comment_id": None,
        "hoisted_reply_id": None,
    }
    response = await ctx.fetcher.get(
        GRAPHQL_URL,
        params={"doc_id": GRAPHQL_DOC_ID, "variables": json.dumps(variables)},
        headers=_api_headers(ctx, with_cookie),
    )
    if with_cookie and response.status_code in (401, 403):
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "Instagram session was rejected",
            credential_outcome=CredentialOutcome.EXPIRED,
        )
    if response.status_code == 429:
        raise StrategyError(ErrorCode.RATE_LIMITED, credential_outcome=CredentialOutcome.RATE_LIMITED)
    if response.status_code >= 400:
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, f"GraphQL HTTP {response.status_code}")

    media = dig(response.json(), "data", "xdt_shortcode_media")
    if not media:
        # Null media: private or age-gated for this session.
        if with_cookie:
            raise StrategyError(ErrorCode.PRIVATE_CONTENT)
        raise StrategyError(ErrorCode.CREDENTIAL_REQUIRED)
    return parse_graphql_media(media, f"https://www.instagram.com/p/{shortcode}/")


async def graphql_public(ctx: ExtractionContext) -> ExtractionResult:
    return await _query_graphql(ctx, with_cookie=False)


async def graphql_authenticated(ctx: ExtractionContext) -> ExtractionResult:
    return await _query_graphql(ctx, with_cookie=True)


async def embed_page(ctx: ExtractionContext) -> ExtractionResult:
    shortcode = _shortcode(ctx.url)
    page = await ctx.fetcher.get_text(
        f"https://www.instagram.com/p/{shortcode}/embed/captioned/",
        headers=ctx.request_headers(with_cookie=False),
    )
    if len(page) < 1000:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Empty embed response")

    formats: list[MediaFormat] = []
    thumbnail = None
    image = _EMBED_IMAGE.search(page) or _EMBED_IMG_TAG.search(page)
    if image:
        thumbnail = decode_url(image.group(1))
    video = _EMBED_VIDEO.search(page)
    if video:
        add_format(formats, "Video", MediaType.VIDEO, decode_url(video.group(1)), thumbnail=thumbnail)
    elif thumbnail:
        add_format(formats, "Original", MediaType.IMAGE, thumbnail, thumbnail=thumbnail)

    owner = _EMBED_OWNER.search(page)
    return ExtractionResult(
        success=True,
        platform=Platform.INSTAGRAM,
        url=f"https://www.instagram.com/p/{shortcode}/",
        title="Instagram Post",
        thumbnail=thumbnail,
        author=f"@{owner.group(1)}" if owner else None,
        formats=formats,
    )


def _widest(candidates: list[dict[str, Any]]) -> str | None:
    if not candidates:
        return None
    return max(candidates, key=lambda c: c.get("width") or 0).get("url")


async def story_api(ctx: ExtractionContext) -> ExtractionResult:
    match = _STORY.search(ctx.url)
    if not match:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Invalid story URL")
    username, story_id = match.groups()
    headers = _api_headers(ctx, with_cookie=True)

    profile = await ctx.fetcher.get(PROFILE_URL, params={"username": username}, headers=headers)
    if profile.status_code in (401, 403):
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "Instagram session was rejected",
            credential_outcome=CredentialOutcome.EXPIRED,
        )
    if profile.status_code == 429:
        raise StrategyError(ErrorCode.RATE_LIMITED, credential_outcome=CredentialOutcome.RATE_LIMITED)
    if profile.status_code == 404:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Could not find user")
    if profile.status_code >= 400:
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, f"Profile HTTP {profile.status_code}")
    user_id = dig(profile.json(), "data", "user", "id")
    if not user_id:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Could not find user")

    reels = await ctx.fetcher.get_json(REELS_MEDIA_URL, params={"reel_ids": user_id}, headers=headers)
    items = dig(reels, "reels_media", 0, "items") or []
    if not items:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "No stories available (they may have expired)")

    # The requested story first, then the rest of the reel.
    items.sort(key=lambda item: str(item.get("pk")) != story_id)
    formats: list[MediaFormat] = []
    thumbnail = None
    for index, item in enumerate(items):
        item_id = f"story-{index}"
        image = _widest(dig(item, "image_versions2", "candidates") or [])
        thumbnail = thumbnail or image
        if item.get("media_type") == 2 and item.get("video_versions"):
            label = "HD Video" if index == 0 else f"Story {index + 1} (Video)"
            add_format(formats, label, MediaType.VIDEO, _widest(item["video_versions"]), item_id=item_id, thumbnail=image)
        elif image:
            label = "Original" if index == 0 else f"Story {index + 1} (Image)"
            add_format(formats, label, MediaType.IMAGE, image, item_id=item_id, thumbnail=image)

    return ExtractionResult(
        success=True,
        platform=Platform.INSTAGRAM,
        url=ctx.url,
        title=f"{username}'s Story",
        thumbnail=thumbnail,
        author=f"@{username}",
        description=f"{len(items)} {'story' if len(items) == 1 else 'stories'} available",
        formats=formats,
    )


POST_STRATEGIES = [
    Strategy("graphql_public", graphql_public),
    Strategy("embed_page", embed_page),
    Strategy("graphql_authenticated", graphql_authenticated, accepts_credential=True, requires_credential=True),
]

STORY_STRATEGIES = [
    Strategy("story_api", story_api, accepts_credential=True, requires_credential=True),
]
