"""Twitter/X: syndication API, then the logged-in GraphQL endpoint."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from mediafetch.extractors.base import ExtractionContext, Strategy, StrategyError
from mediafetch.extractors.helpers import add_format, dig, to_int, truncate
from mediafetch.models.credential import CredentialOutcome
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import (
    Engagement,
    ExtractionResult,
    MediaFormat,
    MediaType,
    Platform,
)
from mediafetch.services.credentials.cookies import cookie_value

logger = logging.getLogger(__name__)

SYNDICATION_URL = "https://cdn.syndication.twimg.com/tweet-result"
GRAPHQL_URL = "https://x.com/i/api/graphql/xOhkmRac04YFZmOzU9PJHg/TweetDetail"
# Public web-client bearer token.
BEARER_TOKEN = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs%3D"
    "1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)

_STATUS = re.compile(r"/(?:#!/)?(\w+)/status(?:es)?/(\d+)")
_DIMENSIONS = re.compile(r"/(\d+)x(\d+)/")
_IMAGE_BASE = re.compile(r"^(.+)\.(\w+)$")

_GRAPHQL_FEATURES = {
    "creator_subscriptions_tweet_preview_api_enabled": True,
    "tweetypie_unmention_optimization_enabled": True,
    "responsive_web_edit_tweet_api_enabled": True,
    "graphql_is_translatable_rweb_tweet_is_translatable_enabled": True,
    "view_counts_everywhere_api_enabled": True,
    "longform_notetweets_consumption_enabled": True,
    "responsive_web_twitter_article_tweet_consumption_enabled": False,
    "tweet_awards_web_tipping_enabled": False,
    "freedom_of_speech_not_reach_fetch_enabled": True,
    "standardized_nudges_misinfo": True,
    "tweet_with_visibility_results_prefer_gql_limited_actions_policy_enabled": True,
    "longform_notetweets_rich_text_read_enabled": True,
    "longform_notetweets_inline_media_enabled": True,
    "responsive_web_graphql_exclude_directive_enabled": True,
    "verified_phone_label_enabled": False,
    "responsive_web_media_download_video_enabled": False,
    "responsive_web_graphql_skip_user_profile_image_extensions_enabled": False,
    "responsive_web_graphql_timeline_navigation_enabled": True,
    "responsive_web_enhance_cards_enabled": False,
}


def parse_status_url(url: str) -> tuple[str, str]:
    match = _STATUS.search(url)
    if not match:
        raise StrategyError(ErrorCode.NO_MEDIA_FOUND, "Could not find a tweet id in the URL")
    return match.group(1), match.group(2)


def _video_quality(url: str, bitrate: int) -> str:
    match = _DIMENSIONS.search(url)
    height = max(int(match.group(1)), int(match.group(2))) if match else 0
    if height >= 1080:
        return "FULLHD (1080p)"
    if height >= 720 or (not height and bitrate >= 2_000_000):
        return "HD (720p)"
    return "SD (480p)"


def parse_media(media_items: list[dict[str, Any]], username: str) -> tuple[list[MediaFormat], str | None]:
    formats: list[MediaFormat] = []
    thumbnail = None
    for idx, media in enumerate(media_items):
        item_id = f"media-{idx}"
        preview = media.get("media_url_https")
        if media.get("type") in ("video", "animated_gif"):
            thumbnail = preview or thumbnail
            variants = [
                v
                for v in dig(media, "video_info", "variants") or []
                if v.get("content_type") == "video/mp4" and v.get("url")
            ]
            variants.sort(key=lambda v: v.get("bitrate") or 0, reverse=True)
            for variant in variants:
                add_format(
                    formats,
                    _video_quality(variant["url"], variant.get("bitrate") or 0),
                    MediaType.VIDEO,
                    variant["url"],
                    item_id=item_id,
                    thumbnail=preview,
                    filename=f"{username}_video_{idx + 1}",
                    has_audio=media.get("type") == "video",
                )
        elif media.get("type") == "photo" and preview:
            thumbnail = thumbnail or preview
            match = _IMAGE_BASE.match(preview)
            common = {"item_id": item_id, "thumbnail": preview, "filename": f"{username}_image_{idx + 1}"}
            if match:
                base, ext = match.groups()
                add_format(formats, "Original (4K)", MediaType.IMAGE, f"{base}?format={ext}&name=4096x4096", **common)
                add_format(formats, "Large", MediaType.IMAGE, f"{base}?format={ext}&name=large", **common)
            else:
                add_format(formats, "Original", MediaType.IMAGE, preview, **common)
    return formats, thumbnail


async def syndication(ctx: ExtractionContext) -> ExtractionResult:
    username, tweet_id = parse_status_url(ctx.url)
    data = await ctx.fetcher.get_json(
        SYNDICATION_URL,
        params={"id": tweet_id, "lang": "en", "token": "x"},
        headers=ctx.request_headers({"Referer": "https://platform.twitter.com/"}, with_cookie=False),
    )
    if not isinstance(data, dict) or not data:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Tweet not found or protected")
    if data.get("__typename") == "TweetTombstone":
        reason = dig(data, "tombstone", "text", "text") or ""
        code = ErrorCode.AGE_RESTRICTED if "age" in reason.lower() else ErrorCode.PRIVATE_CONTENT
        raise StrategyError(code, reason or None)

    author = dig(data, "user", "screen_name") or username
    formats, thumbnail = parse_media(data.get("mediaDetails") or [], author)
    if not formats and data.get("possibly_sensitive"):
        raise StrategyError(ErrorCode.AGE_RESTRICTED)
    return ExtractionResult(
        success=True,
        platform=Platform.TWITTER,
        url=ctx.url,
        title=truncate(data.get("text")) or "Twitter Post",
        description=data.get("text"),
        thumbnail=thumbnail,
        author=author,
        author_name=dig(data, "user", "name"),
        posted_at=data.get("created_at"),
        formats=formats,
        engagement=Engagement(
            likes=to_int(data.get("favorite_count")),
            comments=to_int(data.get("conversation_count")),
        ),
    )


async def graphql(ctx: ExtractionContext) -> ExtractionResult:
    username, tweet_id = parse_status_url(ctx.url)
    ct0 = cookie_value(ctx.cookie, "ct0")
    if not ct0:
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "Twitter cookie is missing the ct0 token",
            credential_outcome=CredentialOutcome.OTHER_ERROR,
        )
    variables = {
        "focalTweetId": tweet_id,
        "with_rux_injections": False,
        "includePromotedContent": True,
        "withCommunity": True,
        "withBirdwatchNotes": True,
        "withVoice": True,
        "withV2Timeline": True,
    }
    response = await ctx.fetcher.get(
        GRAPHQL_URL,
        params={
            "variables": json.dumps(variables, separators=(",", ":")),
            "features": json.dumps(_GRAPHQL_FEATURES, separators=(",", ":")),
        },
        headers=ctx.request_headers(
            {
                "Authorization": f"Bearer {BEARER_TOKEN}",
                "X-Csrf-Token": ct0,
                "X-Twitter-Auth-Type": "OAuth2Session",
                "X-Twitter-Active-User": "yes",
                "X-Twitter-Client-Language": "en",
            }
        ),
    )
    if response.status_code in (401, 403):
        raise StrategyError(
            ErrorCode.CREDENTIAL_REQUIRED,
            "Twitter session was rejected",
            credential_outcome=CredentialOutcome.EXPIRED,
        )
    if response.status_code == 429:
        raise StrategyError(
            ErrorCode.RATE_LIMITED, credential_outcome=CredentialOutcome.RATE_LIMITED
        )
    if response.status_code >= 400:
        raise StrategyError(ErrorCode.UPSTREAM_ERROR, f"GraphQL API error: {response.status_code}")

    instructions = dig(response.json(), "data", "threaded_conversation_with_injections_v2", "instructions") or []
    entries = next(
        (i.get("entries") or [] for i in instructions if i.get("type") == "TimelineAddEntries"),
        [],
    )
    entry = next((e for e in entries if e.get("entryId") == f"tweet-{tweet_id}"), None)
    tweet = dig(entry, "content", "itemContent", "tweet_results", "result") or {}
    tweet = tweet.get("tweet") or tweet
    legacy = tweet.get("legacy")
    if not legacy:
        raise StrategyError(ErrorCode.PRIVATE_CONTENT, "Tweet not found in response")

    user = dig(tweet, "core", "user_results", "result", "legacy") or {}
    author = user.get("screen_name") or username
    media_items = dig(legacy, "extended_entities", "media") or dig(legacy, "entities", "media") or []
    formats, thumbnail = parse_media(media_items, author)
    return ExtractionResult(
        success=True,
        platform=Platform.TWITTER,
        url=ctx.url,
        title=truncate(legacy.get("full_text")) or "Twitter Post",
        description=legacy.get("full_text"),
        thumbnail=thumbnail,
        author=author,
        author_name=user.get("name"),
        posted_at=legacy.get("created_at"),
        formats=formats,
        engagement=Engagement(
            views=to_int(dig(tweet, "views", "count")),
            likes=to_int(legacy.get("favorite_count")),
            comments=to_int(legacy.get("reply_count")),
            shares=to_int(legacy.get("retweet_count")),
            bookmarks=to_int(legacy.get("bookmark_count")),
        ),
    )


STRATEGIES = [
    Strategy("syndication", syndication),
    Strategy("graphql", graphql, accepts_credential=True, requires_credential=True),
]
