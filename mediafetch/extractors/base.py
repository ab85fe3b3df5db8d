"""Strategy and fallback-chain primitives shared by every platform.

A platform extractor is an ordered list of :class:`Strategy` objects.  The
chain runs them one at a time and stops at the first that yields media;
a strategy that raises or comes back empty is logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from mediafetch.models.credential import Credential, CredentialOutcome
from mediafetch.models.errors import ErrorCode, default_message, most_specific
from mediafetch.models.media import ExtractionResult, Platform
from mediafetch.workers.fetcher import Fetcher, FetchError, FetchTimeout

logger = logging.getLogger(__name__)


class StrategyError(Exception):
    """A strategy recognised why it produced nothing (login wall, age gate...).

    ``credential_outcome`` tells the pool what the failure says about the
    credential in use, if any.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        credential_outcome: CredentialOutcome | None = None,
    ) -> None:
        super().__init__(message or default_message(code))
        self.code = code
        self.message = message or default_message(code)
        self.credential_outcome = credential_outcome


@dataclass
class ExtractionContext:
    url: str
    platform: Platform
    fetcher: Fetcher
    headers: dict[str, str] = field(default_factory=dict)
    credential: Credential | None = None

    @property
    def cookie(self) -> str | None:
        return self.credential.secret if self.credential else None

    def request_headers(
        self, extra: dict[str, str] | None = None, with_cookie: bool = True
    ) -> dict[str, str]:
        headers = dict(self.headers)
        if with_cookie and self.cookie:
            headers["Cookie"] = self.cookie
        if extra:
            headers.update(extra)
        return headers


StrategyFunc = Callable[[ExtractionContext], Awaitable[ExtractionResult]]


@dataclass(frozen=True)
class Strategy:
    name: str
    run: StrategyFunc
    accepts_credential: bool = False
    requires_credential: bool = False


@dataclass
class ChainOutcome:
    result: ExtractionResult | None = None
    errors: list[ErrorCode] = field(default_factory=list)
    messages: dict[ErrorCode, str] = field(default_factory=dict)
    credential_signal: CredentialOutcome | None = None
    attempted: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    @property
    def error_code(self) -> ErrorCode:
        return most_specific(self.errors)

    @property
    def message(self) -> str:
        code = self.error_code
        return self.messages.get(code, default_message(code))

    def fail(self, code: ErrorCode, message: str | None = None) -> None:
        self.errors.append(code)
        if message and code not in self.messages:
            self.messages[code] = message


class ExtractionChain:
    def __init__(self, platform: Platform, strategies: list[Strategy]) -> None:
        self.platform = platform
        self.strategies = strategies

    @property
    def needs_credential(self) -> bool:
        """True when no strategy can run anonymously."""
        return all(s.requires_credential for s in self.strategies)

    @property
    def accepts_credential(self) -> bool:
        return any(s.accepts_credential for s in self.strategies)

    async def run(
        self, ctx: ExtractionContext, authenticated_only: bool = False
    ) -> ChainOutcome:
        outcome = ChainOutcome()
        for strategy in self.strategies:
            if strategy.requires_credential and ctx.credential is None:
                continue
            if authenticated_only and not strategy.accepts_credential:
                continue
            outcome.attempted.append(strategy.name)
            uses_credential = ctx.credential is not None and strategy.accepts_credential
            try:
                result = await strategy.run(ctx)
            except StrategyError as exc:
                logger.info("%s/%s: %s", self.platform.value, strategy.name, exc.message)
                outcome.fail(exc.code, exc.message)
                if uses_credential and exc.credential_outcome:
                    outcome.credential_signal = exc.credential_outcome
                continue
            except FetchTimeout as exc:
                logger.warning("%s/%s timed out: %s", self.platform.value, strategy.name, exc)
                outcome.fail(ErrorCode.UPSTREAM_TIMEOUT)
                continue
            except FetchError as exc:
                logger.warning("%s/%s failed: %s", self.platform.value, strategy.name, exc)
                self._classify_fetch_error(outcome, exc, uses_credential)
                continue
            except Exception:
                logger.exception("%s/%s raised", self.platform.value, strategy.name)
                outcome.fail(ErrorCode.UPSTREAM_ERROR)
                continue

            if result.has_media:
                logger.info(
                    "%s/%s found %d formats",
                    self.platform.value,
                    strategy.name,
                    len(result.formats),
                )
                result.used_cookie = uses_credential
                outcome.result = result
                return outcome
            logger.info("%s/%s found no media", self.platform.value, strategy.name)
            outcome.fail(result.error_code or ErrorCode.NO_MEDIA_FOUND, result.message)
        return outcome

    @staticmethod
    def _classify_fetch_error(
        outcome: ChainOutcome, exc: FetchError, uses_credential: bool
    ) -> None:
        if exc.rate_limited:
            outcome.fail(ErrorCode.RATE_LIMITED)
            if uses_credential:
                outcome.credential_signal = CredentialOutcome.RATE_LIMITED
        elif exc.status_code == 401:
            outcome.fail(ErrorCode.CREDENTIAL_REQUIRED)
            if uses_credential:
                outcome.credential_signal = CredentialOutcome.EXPIRED
        elif exc.status_code == 404:
            outcome.fail(ErrorCode.PRIVATE_CONTENT)
        else:
            outcome.fail(ErrorCode.UPSTREAM_ERROR)
