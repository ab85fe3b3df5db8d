from __future__ import annotations

import httpx
import pytest
import respx

from mediafetch.models.media import Platform
from mediafetch.services.urls import (
    InvalidUrlError,
    detect_platform,
    is_short_link,
    normalize_url,
    requires_credential,
    resolve_short_link,
)
from mediafetch.workers.fetcher import Fetcher


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("https://m.facebook.com/reel/123", "https://www.facebook.com/reel/123"),
            ("mbasic.facebook.com/watch?v=5", "https://www.facebook.com/watch?v=5"),
            ("https://twitter.com/a/status/1?s=20&t=abc", "https://x.com/a/status/1"),
            ("https://mobile.x.com/a/status/1", "https://x.com/a/status/1"),
            (
                "https://www.instagram.com/p/Ab1/?igshid=x&utm_source=ig",
                "https://www.instagram.com/p/Ab1/",
            ),
            ("https://instagr.am/p/Ab1/", "https://www.instagram.com/p/Ab1/"),
            (
                "https://www.facebook.com/x/posts/9?__cft__[0]=a&__tn__=R&fbclid=z#frag",
                "https://www.facebook.com/x/posts/9",
            ),
        ],
    )
    def test_canonical_form(self, raw, expected):
        assert normalize_url(raw) == expected

    def test_keeps_meaningful_query(self):
        assert normalize_url("https://www.facebook.com/watch?v=7&fbclid=a") == (
            "https://www.facebook.com/watch?v=7"
        )

    @pytest.mark.parametrize("raw", ["", "   ", "ftp://x.com/a", "not a url", "https://localhost/"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidUrlError):
            normalize_url(raw)


class TestPlatformDetection:
    @pytest.mark.parametrize(
        "url, platform",
        [
            ("https://www.facebook.com/reel/1", Platform.FACEBOOK),
            ("https://fb.watch/abc/", Platform.FACEBOOK),
            ("https://www.instagram.com/p/x/", Platform.INSTAGRAM),
            ("https://x.com/a/status/1", Platform.TWITTER),
            ("https://vm.tiktok.com/ZM1/", Platform.TIKTOK),
            ("https://weibo.com/tv/show/1034:5", Platform.WEIBO),
            ("https://m.weibo.cn/status/5", Platform.WEIBO),
        ],
    )
    def test_known(self, url, platform):
        assert detect_platform(url) is platform

    def test_lookalike_host_is_unsupported(self):
        assert detect_platform("https://notfacebook.com/reel/1") is None
        assert detect_platform("https://youtube.com/watch?v=1") is None

    def test_short_links(self):
        assert is_short_link(Platform.TIKTOK, "https://vt.tiktok.com/ZS1/")
        assert is_short_link(Platform.FACEBOOK, "https://www.facebook.com/share/r/abc/")
        assert not is_short_link(Platform.TWITTER, "https://x.com/a/status/1")

    def test_credential_required_content(self):
        assert requires_credential(Platform.WEIBO, "https://weibo.com/1/abc")
        assert requires_credential(
            Platform.INSTAGRAM, "https://www.instagram.com/stories/someone/1/"
        )
        assert not requires_credential(Platform.INSTAGRAM, "https://www.instagram.com/p/x/")


class TestResolveShortLink:
    @respx.mock
    async def test_follows_redirect(self, settings):
        respx.head("https://vm.tiktok.com/ZM1/").mock(
            return_value=httpx.Response(
                301, headers={"Location": "https://www.tiktok.com/@u/video/42"}
            )
        )
        respx.head("https://www.tiktok.com/@u/video/42").mock(
            return_value=httpx.Response(200)
        )
        fetcher = Fetcher(settings)
        resolved = await resolve_short_link(fetcher, "https://vm.tiktok.com/ZM1/", timeout=5)
        await fetcher.close()
        assert resolved == "https://www.tiktok.com/@u/video/42"

    @respx.mock
    async def test_failure_returns_input(self, settings):
        respx.head("https://t.co/abc").mock(side_effect=httpx.ReadTimeout("slow"))
        respx.get("https://t.co/abc").mock(side_effect=httpx.ReadTimeout("slow"))
        fetcher = Fetcher(settings)
        resolved = await resolve_short_link(fetcher, "https://t.co/abc", timeout=1)
        await fetcher.close()
        assert resolved == "https://t.co/abc"
