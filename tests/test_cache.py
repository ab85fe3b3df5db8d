from __future__ import annotations

import pytest

from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import ExtractionResult, MediaFormat, MediaType, Platform
from mediafetch.repositories.cache.memory import MemoryCacheBackend
from mediafetch.repositories.cache.repository import CacheRepository
from mediafetch.services.cache.keys import cache_key, extract_content_id
from mediafetch.services.cache.service import ResultCache


def _result(title: str = "Post", url: str = "https://video.example/a.mp4") -> ExtractionResult:
    return ExtractionResult(
        success=True,
        platform=Platform.TWITTER,
        title=title,
        formats=[MediaFormat(quality="HD 720p", type=MediaType.VIDEO, url=url)],
    )


@pytest.fixture(params=["memory", "mongo"])
def backend(request, mongo_db):
    if request.param == "memory":
        return MemoryCacheBackend()
    return CacheRepository(mongo_db["api_cache"])


@pytest.fixture
def cache(backend, settings, clock):
    return ResultCache(backend, settings, clock)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class TestCacheKeys:
    def test_query_string_does_not_change_key(self):
        assert cache_key("twitter", "https://x.com/user/status/123?s=20") == cache_key(
            "twitter", "https://x.com/user/status/123"
        )

    def test_content_id_key(self):
        assert cache_key("twitter", "https://x.com/user/status/123") == "twitter:123"

    def test_instagram_shortcode_shared_by_post_and_reel(self):
        assert cache_key("instagram", "https://www.instagram.com/p/AbC_1/") == cache_key(
            "instagram", "https://www.instagram.com/reel/AbC_1/?igsh=x"
        )

    def test_story_ids_are_namespaced(self):
        assert extract_content_id(
            "instagram", "https://www.instagram.com/stories/someone/3141592653/"
        ) == "story:3141592653"

    def test_fallback_key_is_lowercased_without_query_or_slash(self):
        key = cache_key("tiktok", "https://www.TikTok.com/@User/?lang=en")
        assert key == "tiktok:https://www.tiktok.com/@user"


# ---------------------------------------------------------------------------
# ResultCache against both backends
# ---------------------------------------------------------------------------


class TestResultCache:
    async def test_miss_then_hit(self, cache):
        url = "https://x.com/a/status/1"
        assert await cache.get("twitter", url) is None
        assert await cache.set("twitter", url, _result()) is True
        hit = await cache.get("twitter", url + "?s=20")
        assert hit is not None
        assert hit.cached is True
        assert hit.title == "Post"

    async def test_set_twice_keeps_latest_payload(self, cache):
        url = "https://x.com/a/status/2"
        await cache.set("twitter", url, _result(title="first"))
        await cache.set("twitter", url, _result(title="second"))
        hit = await cache.get("twitter", url)
        assert hit.title == "second"
        stats = await cache.stats()
        assert stats.size_by_platform == {"twitter": 1}

    async def test_expired_entry_reads_as_miss(self, cache, clock):
        url = "https://x.com/a/status/3"
        await cache.set("twitter", url, _result(), ttl=60)
        clock.advance(seconds=59)
        assert await cache.get("twitter", url) is not None
        clock.advance(seconds=2)
        assert await cache.get("twitter", url) is None
        assert await cache.has("twitter", url) is False

    async def test_failures_are_not_cached(self, cache):
        url = "https://x.com/a/status/4"
        failed = ExtractionResult.failure(ErrorCode.NO_MEDIA_FOUND)
        assert await cache.set("twitter", url, failed) is False
        empty = ExtractionResult(success=True, platform=Platform.TWITTER)
        assert await cache.set("twitter", url, empty) is False
        assert await cache.get("twitter", url) is None

    async def test_default_ttl_comes_from_settings(self, cache, clock, settings):
        url = "https://www.facebook.com/reel/55"
        await cache.set("facebook", url, _result())
        clock.advance(seconds=settings.ttl_for("facebook") - 1)
        assert await cache.get("facebook", url) is not None
        clock.advance(seconds=2)
        assert await cache.get("facebook", url) is None

    async def test_clear_by_platform(self, cache):
        await cache.set("twitter", "https://x.com/a/status/5", _result())
        await cache.set("tiktok", "https://www.tiktok.com/@a/video/9", _result())
        assert await cache.clear("twitter") == 1
        stats = await cache.stats()
        assert stats.size_by_platform == {"tiktok": 1}

    async def test_hit_rate(self, cache):
        url = "https://x.com/a/status/6"
        await cache.get("twitter", url)
        await cache.set("twitter", url, _result())
        await cache.get("twitter", url)
        stats = await cache.stats()
        assert (stats.hits, stats.misses, stats.hit_rate) == (1, 1, 50.0)

    async def test_returned_result_is_detached_from_store(self, cache):
        url = "https://x.com/a/status/10"
        stored = _result()
        await cache.set("twitter", url, stored)
        stored.formats.append(MediaFormat(quality="SD", type=MediaType.VIDEO, url="https://v/sd.mp4"))

        hit = await cache.get("twitter", url)
        assert len(hit.formats) == 1
        hit.formats.clear()
        assert len((await cache.get("twitter", url)).formats) == 1

    async def test_delete_single_entry(self, cache):
        url = "https://x.com/a/status/11"
        await cache.set("twitter", url, _result())
        assert await cache.delete("twitter", url + "?s=20") is True
        assert await cache.get("twitter", url) is None
        assert await cache.delete("twitter", url) is False


class TestMemoryBackend:
    async def test_cleanup_purges_expired(self, settings, clock):
        cache = ResultCache(MemoryCacheBackend(), settings, clock)
        await cache.set("twitter", "https://x.com/a/status/7", _result(), ttl=10)
        await cache.set("twitter", "https://x.com/a/status/8", _result(), ttl=100)
        clock.advance(seconds=11)
        assert await cache.cleanup() == 1

    async def test_expired_read_leaves_entry_for_cleanup(self, settings, clock):
        cache = ResultCache(MemoryCacheBackend(), settings, clock)
        url = "https://x.com/a/status/12"
        await cache.set("twitter", url, _result(), ttl=10)
        clock.advance(seconds=11)

        assert await cache.get("twitter", url) is None
        assert (await cache.stats()).size == 1
        assert await cache.cleanup() == 1
        assert (await cache.stats()).size == 0

    async def test_rewrite_after_expiry_is_served(self, settings, clock):
        cache = ResultCache(MemoryCacheBackend(), settings, clock)
        url = "https://x.com/a/status/13"
        await cache.set("twitter", url, _result(title="old"), ttl=10)
        clock.advance(seconds=11)
        assert await cache.get("twitter", url) is None
        await cache.set("twitter", url, _result(title="new"), ttl=10)
        assert (await cache.get("twitter", url)).title == "new"

    async def test_oldest_entry_evicted_at_capacity(self, settings, clock):
        backend = MemoryCacheBackend(max_items=2)
        cache = ResultCache(backend, settings, clock)
        for n in range(3):
            await cache.set("twitter", f"https://x.com/a/status/{n}", _result())
        assert await cache.get("twitter", "https://x.com/a/status/0") is None
        assert await cache.get("twitter", "https://x.com/a/status/2") is not None
