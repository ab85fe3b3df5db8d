from __future__ import annotations

import random

import pytest

from mediafetch.models.fingerprint import Fingerprint
from mediafetch.repositories.fingerprints.repository import FingerprintRepository
from mediafetch.services.fingerprints.profiles import (
    DEFAULT_PROFILES,
    FALLBACK_PROFILE,
    build_headers,
)
from mediafetch.services.fingerprints.service import FingerprintPool


@pytest.fixture
def repo(mongo_db):
    return FingerprintRepository(mongo_db["fingerprints"])


@pytest.fixture
def pool(repo, clock):
    return FingerprintPool(repo, rng=random.Random(7), clock=clock)


def _fp(id: str, **kwargs) -> Fingerprint:
    defaults = dict(id=id, browser="firefox", user_agent=f"UA {id}")
    return Fingerprint(**{**defaults, **kwargs})


class TestFingerprintPool:
    async def test_seed_defaults_once(self, pool, repo):
        assert await pool.seed_defaults() == len(DEFAULT_PROFILES)
        assert await pool.seed_defaults() == 0
        assert await repo.count() == len(DEFAULT_PROFILES)

    async def test_platform_scope_and_enabled(self, pool, repo):
        await repo.insert_many(
            [
                _fp("tiktok-only", platform="tiktok"),
                _fp("disabled", enabled=False),
                _fp("shared"),
            ]
        )
        picks = {(await pool.pick("twitter")).id for _ in range(20)}
        assert picks == {"shared"}

    async def test_zero_priority_excluded(self, pool, repo):
        await repo.insert_many([_fp("zero", priority=0)])
        assert await pool.pick("twitter") is None

    async def test_chromium_preferred_for_facebook(self, pool, repo):
        await repo.insert_many(
            [_fp("firefox"), _fp("chrome", browser="chrome", sec_ch_ua='"Chromium";v="143"')]
        )
        picks = {(await pool.pick("facebook")).id for _ in range(20)}
        assert picks == {"chrome"}

    async def test_pick_records_use(self, pool, repo, clock):
        await repo.insert_many([_fp("only")])
        await pool.pick("tiktok")
        stored = await repo.get("only")
        assert stored.use_count == 1
        assert stored.last_used_at == clock.now

    async def test_report_outcome(self, pool, repo):
        await repo.insert_many([_fp("only")])
        await pool.report_outcome("only", True)
        await pool.report_outcome("only", False, "blocked")
        stored = await repo.get("only")
        assert (stored.success_count, stored.error_count) == (1, 1)
        assert stored.last_error == "blocked"


class TestBuildHeaders:
    def test_chromium_sends_client_hints(self):
        headers = build_headers(FALLBACK_PROFILE, "twitter")
        assert headers["Sec-Ch-Ua"] == FALLBACK_PROFILE.sec_ch_ua
        assert headers["Sec-Fetch-Site"] == "none"
        assert "Referer" not in headers

    def test_firefox_omits_client_hints(self):
        headers = build_headers(_fp("ff"), "tiktok")
        assert "Sec-Ch-Ua" not in headers
        assert headers["User-Agent"] == "UA ff"

    def test_facebook_same_origin(self):
        headers = build_headers(FALLBACK_PROFILE, "facebook", cookie="c_user=1")
        assert headers["Referer"] == "https://www.facebook.com/"
        assert headers["Sec-Fetch-Site"] == "same-origin"
        assert headers["Cookie"] == "c_user=1"
