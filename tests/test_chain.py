from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from mediafetch.extractors.base import (
    ExtractionChain,
    ExtractionContext,
    Strategy,
    StrategyError,
)
from mediafetch.models.credential import CredentialOutcome
from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import ExtractionResult, MediaFormat, MediaType, Platform
from mediafetch.workers.fetcher import FetchError, FetchTimeout
from tests.conftest import make_credential


def _found(name: str = "found") -> ExtractionResult:
    return ExtractionResult(
        success=True,
        platform=Platform.TWITTER,
        title=name,
        formats=[MediaFormat(quality="HD", type=MediaType.VIDEO, url=f"https://cdn/{name}.mp4")],
    )


def _empty() -> ExtractionResult:
    return ExtractionResult(success=True, platform=Platform.TWITTER)


@pytest.fixture
def ctx():
    return ExtractionContext(
        url="https://x.com/a/status/1",
        platform=Platform.TWITTER,
        fetcher=MagicMock(),
        headers={"User-Agent": "UA"},
    )


class TestExtractionChain:
    async def test_first_success_short_circuits(self, ctx):
        first = AsyncMock(return_value=_found("first"))
        second = AsyncMock(return_value=_found("second"))
        chain = ExtractionChain(
            Platform.TWITTER, [Strategy("one", first), Strategy("two", second)]
        )
        outcome = await chain.run(ctx)
        assert outcome.result.title == "first"
        assert first.call_count == 1
        assert second.call_count == 0

    async def test_falls_through_empty_and_errors(self, ctx):
        strategies = [
            Strategy("empty", AsyncMock(return_value=_empty())),
            Strategy("boom", AsyncMock(side_effect=ValueError("parse"))),
            Strategy("http", AsyncMock(side_effect=FetchError("bad", status_code=500))),
            Strategy("ok", AsyncMock(return_value=_found())),
        ]
        outcome = await ExtractionChain(Platform.TWITTER, strategies).run(ctx)
        assert outcome.succeeded
        assert outcome.attempted == ["empty", "boom", "http", "ok"]

    async def test_most_specific_error_wins(self, ctx):
        strategies = [
            Strategy("timeout", AsyncMock(side_effect=FetchTimeout("slow"))),
            Strategy("private", AsyncMock(side_effect=StrategyError(ErrorCode.PRIVATE_CONTENT, "Gone"))),
            Strategy("empty", AsyncMock(return_value=_empty())),
        ]
        outcome = await ExtractionChain(Platform.TWITTER, strategies).run(ctx)
        assert not outcome.succeeded
        assert outcome.error_code is ErrorCode.PRIVATE_CONTENT
        assert outcome.message == "Gone"

    async def test_credential_strategies_skipped_without_credential(self, ctx):
        needs_cookie = AsyncMock(return_value=_found())
        chain = ExtractionChain(
            Platform.TWITTER,
            [Strategy("auth", needs_cookie, accepts_credential=True, requires_credential=True)],
        )
        assert chain.needs_credential
        outcome = await chain.run(ctx)
        assert needs_cookie.call_count == 0
        assert outcome.error_code is ErrorCode.NO_MEDIA_FOUND

    async def test_authenticated_only_runs_credential_strategies(self, ctx):
        anonymous = AsyncMock(return_value=_found("anon"))
        authed = AsyncMock(return_value=_found("authed"))
        chain = ExtractionChain(
            Platform.TWITTER,
            [
                Strategy("anon", anonymous),
                Strategy("authed", authed, accepts_credential=True, requires_credential=True),
            ],
        )
        assert not chain.needs_credential
        ctx.credential = make_credential(platform="twitter", secret="auth_token=1")
        outcome = await chain.run(ctx, authenticated_only=True)
        assert anonymous.call_count == 0
        assert outcome.result.title == "authed"
        assert outcome.result.used_cookie is True

    async def test_rate_limit_signal_for_credential(self, ctx):
        ctx.credential = make_credential(platform="twitter", secret="auth_token=1")
        chain = ExtractionChain(
            Platform.TWITTER,
            [
                Strategy(
                    "authed",
                    AsyncMock(side_effect=FetchError("429", status_code=429)),
                    accepts_credential=True,
                )
            ],
        )
        outcome = await chain.run(ctx)
        assert outcome.error_code is ErrorCode.RATE_LIMITED
        assert outcome.credential_signal is CredentialOutcome.RATE_LIMITED

    async def test_no_signal_when_credential_not_used(self, ctx):
        ctx.credential = make_credential(platform="twitter", secret="auth_token=1")
        chain = ExtractionChain(
            Platform.TWITTER,
            [Strategy("anon", AsyncMock(side_effect=FetchError("401", status_code=401)))],
        )
        outcome = await chain.run(ctx)
        assert outcome.error_code is ErrorCode.CREDENTIAL_REQUIRED
        assert outcome.credential_signal is None
