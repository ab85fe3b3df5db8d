"""Maps a platform URL to the strategy chain that extracts it."""

from __future__ import annotations

from mediafetch.extractors import facebook, instagram, tiktok, twitter, weibo
from mediafetch.extractors.base import ExtractionChain
from mediafetch.models.media import Platform
from mediafetch.services.urls import is_story


def chain_for(platform: Platform, url: str) -> ExtractionChain:
    if platform is Platform.FACEBOOK:
        strategies = facebook.STORY_STRATEGIES if is_story(platform, url) else facebook.POST_STRATEGIES
    elif platform is Platform.INSTAGRAM:
        strategies = instagram.STORY_STRATEGIES if is_story(platform, url) else instagram.POST_STRATEGIES
    elif platform is Platform.TWITTER:
        strategies = twitter.STRATEGIES
    elif platform is Platform.TIKTOK:
        strategies = tiktok.STRATEGIES
    elif platform is Platform.WEIBO:
        strategies = weibo.TV_STRATEGIES if weibo.is_tv(url) else weibo.POST_STRATEGIES
    else:
        raise ValueError(f"No extractor for platform {platform!r}")
    return ExtractionChain(platform, strategies)
