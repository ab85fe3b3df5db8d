from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from mediafetch.models.credential import (
    CredentialCreate,
    CredentialOutcome,
    CredentialStatus,
    CredentialTier,
)
from mediafetch.repositories.credentials.repository import CredentialRepository
from mediafetch.services.credentials.cookies import (
    InvalidCookieError,
    cookie_value,
    parse_cookie,
    validate_cookie,
)
from mediafetch.services.credentials.service import CredentialPool
from mediafetch.workers.fetcher import Fetcher
from tests.conftest import T0, make_credential


@pytest.fixture
def repo(mongo_db):
    return CredentialRepository(mongo_db["credentials"])


@pytest.fixture
def pool(repo, settings, clock):
    return CredentialPool(repo, MagicMock(), settings, clock)


# ---------------------------------------------------------------------------
# Cookie parsing
# ---------------------------------------------------------------------------


class TestCookies:
    def test_header_string_kept(self):
        assert parse_cookie(" c_user=1; xs=abc ") == "c_user=1; xs=abc"

    def test_json_export_filtered_by_domain(self):
        raw = (
            '[{"name": "sessionid", "value": "s1", "domain": ".instagram.com"},'
            ' {"name": "other", "value": "x", "domain": ".example.com"}]'
        )
        assert parse_cookie(raw, "instagram") == "sessionid=s1"

    def test_empty_cookie_rejected(self):
        with pytest.raises(InvalidCookieError):
            parse_cookie("   ")

    def test_malformed_json_rejected(self):
        with pytest.raises(InvalidCookieError, match="Malformed"):
            parse_cookie("[{not json")

    def test_missing_required_cookies(self):
        assert validate_cookie("c_user=1", "facebook") == ["xs"]
        assert validate_cookie("c_user=1; xs=2", "facebook") == []

    def test_cookie_value(self):
        assert cookie_value("a=1; ct0=tok; b=2", "ct0") == "tok"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestAcquire:
    async def test_lru_rotation(self, repo, pool, clock):
        await repo.insert(make_credential(id="old", last_used_at=T0 - timedelta(hours=5)))
        await repo.insert(make_credential(id="new", last_used_at=T0 - timedelta(hours=1)))
        first = await pool.acquire("facebook")
        clock.advance(seconds=1)
        second = await pool.acquire("facebook")
        assert (first.id, second.id) == ("old", "new")

    async def test_never_used_credential_goes_first(self, repo, pool):
        await repo.insert(make_credential(id="used", last_used_at=T0 - timedelta(days=1)))
        await repo.insert(make_credential(id="fresh"))
        assert (await pool.acquire("facebook")).id == "fresh"

    async def test_hourly_quota(self, repo, pool, clock):
        await repo.insert(make_credential(max_uses_per_hour=3))
        for _ in range(3):
            assert await pool.acquire("facebook") is not None
            clock.advance(minutes=1)
        assert await pool.acquire("facebook") is None
        # The first use was at T0; one second past the hour it drops out.
        clock.now = T0 + timedelta(hours=1, seconds=1)
        assert await pool.acquire("facebook") is not None

    async def test_disabled_and_expired_never_selected(self, repo, pool):
        await repo.insert(make_credential(id="a", status=CredentialStatus.DISABLED))
        await repo.insert(make_credential(id="b", status=CredentialStatus.EXPIRED))
        assert await pool.acquire("facebook") is None
        assert await pool.has_usable("facebook") is False

    async def test_other_platform_not_selected(self, repo, pool):
        await repo.insert(make_credential(platform="instagram", secret="sessionid=1"))
        assert await pool.acquire("facebook") is None

    async def test_private_credential_only_for_owner(self, repo, pool):
        await repo.insert(
            make_credential(id="mine", tier=CredentialTier.PRIVATE, owner="alice")
        )
        assert await pool.acquire("facebook") is None
        assert await pool.acquire("facebook", CredentialTier.PRIVATE, "bob") is None
        claimed = await pool.acquire("facebook", CredentialTier.PRIVATE, "alice")
        assert claimed.id == "mine"
        assert await pool.has_usable("facebook", "alice") is True
        assert await pool.has_usable("facebook", "bob") is False

    async def test_claim_records_use(self, repo, pool):
        await repo.insert(make_credential())
        claimed = await pool.acquire("facebook")
        assert claimed.last_used_at == T0
        assert claimed.recent_uses == [T0]
        assert claimed.version == 1

    async def test_stale_snapshot_cannot_claim(self, repo, mongo_db):
        await repo.insert(make_credential())
        snapshot = await repo.get("cred-1")
        await mongo_db["credentials"].update_one({"id": "cred-1"}, {"$inc": {"version": 1}})

        assert await repo.claim(snapshot, T0, [T0]) is None
        stored = await repo.get("cred-1")
        assert stored.version == 1
        assert stored.recent_uses == []
        assert stored.last_used_at is None

    async def test_lost_claim_falls_through_to_next_candidate(self, repo, pool, mongo_db):
        await repo.insert(make_credential(id="a", last_used_at=T0 - timedelta(hours=5)))
        await repo.insert(make_credential(id="b", last_used_at=T0 - timedelta(hours=1)))
        real_find = repo.find

        async def find_then_race(**kwargs):
            found = await real_find(**kwargs)
            # another worker claims "a" between our read and our claim
            await mongo_db["credentials"].update_one({"id": "a"}, {"$inc": {"version": 1}})
            return found

        with patch.object(repo, "find", new=find_then_race):
            claimed = await pool.acquire("facebook")

        assert claimed.id == "b"
        assert (await repo.get("a")).last_used_at == T0 - timedelta(hours=5)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestReportOutcome:
    async def test_rate_limit_cooldown_boundary(self, repo, pool, clock, settings):
        await repo.insert(make_credential())
        await pool.acquire("facebook")
        updated = await pool.report_outcome("cred-1", CredentialOutcome.RATE_LIMITED)
        cooldown = timedelta(minutes=settings.credential_cooldown_minutes)
        assert updated.status is CredentialStatus.COOLDOWN
        assert updated.cooldown_until == T0 + cooldown

        clock.now = T0 + cooldown - timedelta(seconds=1)
        assert await pool.acquire("facebook") is None
        assert await pool.has_usable("facebook") is True

        clock.now = T0 + cooldown + timedelta(seconds=1)
        claimed = await pool.acquire("facebook")
        assert claimed is not None
        assert claimed.status is CredentialStatus.HEALTHY

    async def test_second_rate_limit_not_double_counted(self, repo, pool):
        await repo.insert(make_credential())
        first = await pool.report_outcome("cred-1", CredentialOutcome.RATE_LIMITED)
        second = await pool.report_outcome("cred-1", CredentialOutcome.RATE_LIMITED)
        assert first is not None
        assert second is None
        stored = await repo.get("cred-1")
        assert stored.error_count == 1

    async def test_concurrent_rate_limits_apply_once(self, repo, pool, settings):
        await repo.insert(make_credential())
        results = await asyncio.gather(
            pool.report_outcome("cred-1", CredentialOutcome.RATE_LIMITED),
            pool.report_outcome("cred-1", CredentialOutcome.RATE_LIMITED),
        )
        assert sum(r is not None for r in results) == 1
        stored = await repo.get("cred-1")
        assert stored.status is CredentialStatus.COOLDOWN
        assert stored.error_count == 1
        assert stored.cooldown_until == T0 + timedelta(minutes=settings.credential_cooldown_minutes)

    async def test_success_counts_use(self, repo, pool):
        await repo.insert(make_credential(last_error="old"))
        await pool.acquire("facebook")
        updated = await pool.report_outcome("cred-1", CredentialOutcome.SUCCESS)
        assert (updated.use_count, updated.success_count) == (1, 1)
        assert updated.last_error is None

    async def test_expired_is_terminal(self, repo, pool, clock):
        await repo.insert(make_credential())
        updated = await pool.report_outcome("cred-1", CredentialOutcome.EXPIRED)
        assert updated.status is CredentialStatus.EXPIRED
        clock.advance(days=1)
        assert await pool.acquire("facebook") is None

    async def test_other_error_keeps_status(self, repo, pool):
        await repo.insert(make_credential())
        updated = await pool.report_outcome(
            "cred-1", CredentialOutcome.OTHER_ERROR, "parse failure"
        )
        assert updated.status is CredentialStatus.HEALTHY
        assert updated.error_count == 1
        assert updated.last_error == "parse failure"


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


class TestOperatorActions:
    async def test_add_validates_cookie(self, pool):
        with pytest.raises(InvalidCookieError, match="xs"):
            await pool.add(CredentialCreate(platform="facebook", secret="c_user=1"))

    async def test_add_private_requires_owner(self, pool):
        with pytest.raises(InvalidCookieError, match="owner"):
            await pool.add(
                CredentialCreate(
                    platform="instagram",
                    secret="sessionid=1",
                    tier=CredentialTier.PRIVATE,
                )
            )

    async def test_add_uses_default_quota(self, pool, settings):
        credential = await pool.add(
            CredentialCreate(platform="instagram", secret="sessionid=1")
        )
        assert credential.max_uses_per_hour == settings.credential_max_uses_per_hour
        listed = await pool.list_credentials("instagram")
        assert [c.id for c in listed] == [credential.id]

    async def test_set_status_reenables_expired(self, repo, pool):
        await repo.insert(make_credential(status=CredentialStatus.EXPIRED))
        await pool.set_status("cred-1", CredentialStatus.HEALTHY)
        assert await pool.acquire("facebook") is not None

    async def test_delete(self, repo, pool):
        await repo.insert(make_credential())
        assert await pool.delete("cred-1") is True
        assert await repo.get("cred-1") is None


class TestCredentialHealthCheck:
    @respx.mock
    async def test_login_wall_reports_unhealthy_without_mutation(self, repo, settings, clock):
        respx.get("https://www.facebook.com/me").mock(
            return_value=httpx.Response(200, text="<form id='login_form'></form>")
        )
        fetcher = Fetcher(settings)
        pool = CredentialPool(repo, fetcher, settings, clock)
        await repo.insert(make_credential())
        result = await pool.test("cred-1")
        await fetcher.close()
        assert result.healthy is False
        assert result.error == "Session expired"
        stored = await repo.get("cred-1")
        assert stored.status is CredentialStatus.HEALTHY
        assert stored.error_count == 0

    @respx.mock
    async def test_healthy_session(self, repo, settings, clock):
        respx.get("https://www.facebook.com/me").mock(
            return_value=httpx.Response(200, text="<html>profile</html>")
        )
        fetcher = Fetcher(settings)
        pool = CredentialPool(repo, fetcher, settings, clock)
        await repo.insert(make_credential())
        result = await pool.test("cred-1")
        await fetcher.close()
        assert result.healthy is True
        assert result.status_code == 200

    async def test_unknown_credential(self, pool):
        result = await pool.test("missing")
        assert result.healthy is False
