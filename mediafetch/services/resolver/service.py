from __future__ import annotations

import logging
import time
from typing import Callable

from mediafetch.core.config import Settings
from mediafetch.extractors.base import ChainOutcome, ExtractionChain, ExtractionContext
from mediafetch.extractors.postprocess import postprocess
from mediafetch.extractors.registry import chain_for
from mediafetch.models.credential import Credential, CredentialOutcome, CredentialTier
from mediafetch.models.errors import ErrorCode
from mediafetch.models.fingerprint import Fingerprint
from mediafetch.models.media import ExtractionResult, Platform
from mediafetch.services.cache.service import ResultCache
from mediafetch.services.credentials.service import CredentialPool
from mediafetch.services.fingerprints.profiles import FALLBACK_PROFILE, build_headers
from mediafetch.services.fingerprints.service import FingerprintPool
from mediafetch.services.governor.service import ServiceGovernor
from mediafetch.services.urls import (
    InvalidUrlError,
    detect_platform,
    is_short_link,
    normalize_url,
    requires_credential,
    resolve_short_link,
)
from mediafetch.workers.fetcher import Fetcher

logger = logging.getLogger(__name__)

ChainFactory = Callable[[Platform, str], ExtractionChain]


class Resolver:
    """Turns a post URL into media formats.

    Owns no state of its own: admission, caching, credentials and
    fingerprints are delegated to the services passed in.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: ResultCache,
        credentials: CredentialPool,
        fingerprints: FingerprintPool,
        governor: ServiceGovernor,
        settings: Settings,
        chains: ChainFactory = chain_for,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._credentials = credentials
        self._fingerprints = fingerprints
        self._governor = governor
        self._settings = settings
        self._chains = chains

    async def resolve(
        self,
        raw_url: str,
        principal: str | None = None,
        skip_cache: bool = False,
    ) -> ExtractionResult:
        """Resolve *raw_url*.  Never raises; failures come back as results."""
        try:
            return await self._resolve(raw_url, principal, skip_cache)
        except Exception:
            logger.exception("Unexpected error resolving %s", raw_url)
            return ExtractionResult.failure(ErrorCode.UPSTREAM_ERROR)

    async def _resolve(
        self, raw_url: str, principal: str | None, skip_cache: bool
    ) -> ExtractionResult:
        try:
            url = normalize_url(raw_url)
        except InvalidUrlError as exc:
            logger.info("Rejected URL %r: %s", raw_url, exc)
            return ExtractionResult.failure(ErrorCode.INVALID_URL)
        platform = detect_platform(url)
        if platform is None:
            return ExtractionResult.failure(ErrorCode.UNSUPPORTED_PLATFORM)

        admission = await self._governor.admit(platform.value)
        if not admission.allowed:
            return ExtractionResult.failure(
                admission.error_code, admission.message, platform
            )

        if not skip_cache:
            cached = await self._cache.get(platform.value, url)
            if cached is not None:
                return cached

        resolved = await self._follow_short_link(platform, url)
        if resolved != url and not skip_cache:
            cached = await self._cache.get(platform.value, resolved)
            if cached is not None:
                return cached

        started = time.monotonic()
        chain = self._chains(platform, resolved)
        credential: Credential | None = None
        if requires_credential(platform, resolved) or chain.needs_credential:
            credential = await self._acquire(platform, principal)
            if credential is None:
                code = (
                    ErrorCode.NO_CREDENTIAL_AVAILABLE
                    if await self._credentials.has_usable(platform.value, principal)
                    else ErrorCode.CREDENTIAL_REQUIRED
                )
                logger.info("No %s credential for %s: %s", platform.value, resolved, code.value)
                elapsed_ms = int((time.monotonic() - started) * 1000)
                await self._governor.record_outcome(platform.value, False, elapsed_ms)
                result = ExtractionResult.failure(code, platform=platform)
                result.response_time_ms = elapsed_ms
                return result

        fingerprint = await self._fingerprints.pick(platform.value)
        ctx = ExtractionContext(
            url=resolved,
            platform=platform,
            fetcher=self._fetcher,
            headers=build_headers(fingerprint or FALLBACK_PROFILE, platform.value),
            credential=credential,
        )

        outcome = await chain.run(ctx)
        if credential is None and not outcome.succeeded and chain.accepts_credential:
            credential = await self._acquire(platform, principal)
            if credential is not None:
                logger.info(
                    "Retrying %s with credential %s after %s",
                    resolved,
                    credential.id,
                    outcome.error_code.value,
                )
                ctx.credential = credential
                outcome = _merge(outcome, await chain.run(ctx, authenticated_only=True))

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if outcome.succeeded:
            result = await self._finish_success(platform, url, resolved, outcome, elapsed_ms, credential)
        else:
            result = await self._finish_failure(platform, outcome, elapsed_ms, credential)
        if fingerprint is not None:
            await self._fingerprints.report_outcome(
                fingerprint.id, result.success, None if result.success else result.message
            )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _follow_short_link(self, platform: Platform, url: str) -> str:
        if not is_short_link(platform, url):
            return url
        target = await resolve_short_link(self._fetcher, url, self._settings.resolve_timeout)
        try:
            resolved = normalize_url(target)
        except InvalidUrlError:
            return url
        if detect_platform(resolved) is not platform:
            logger.warning("Short link %s left %s (%s); ignoring", url, platform.value, resolved)
            return url
        return resolved

    async def _acquire(self, platform: Platform, principal: str | None) -> Credential | None:
        if principal:
            credential = await self._credentials.acquire(
                platform.value, CredentialTier.PRIVATE, principal
            )
            if credential is not None:
                return credential
        return await self._credentials.acquire(platform.value, CredentialTier.PUBLIC)

    async def _finish_success(
        self,
        platform: Platform,
        url: str,
        resolved: str,
        outcome: ChainOutcome,
        elapsed_ms: int,
        credential: Credential | None,
    ) -> ExtractionResult:
        result = outcome.result
        result.formats = postprocess(result.formats)
        result.platform = platform
        result.url = resolved
        result.response_time_ms = elapsed_ms
        result.cached = False

        ttl = self._governor.cache_ttl(platform.value)
        for key_url in dict.fromkeys((url, resolved)):
            try:
                await self._cache.set(platform.value, key_url, result, ttl)
            except RuntimeError as exc:
                logger.warning("Could not cache %s: %s", key_url, exc)

        if credential is not None and result.used_cookie:
            await self._credentials.report_outcome(credential.id, CredentialOutcome.SUCCESS)
        await self._governor.record_outcome(platform.value, True, elapsed_ms)
        return result

    async def _finish_failure(
        self,
        platform: Platform,
        outcome: ChainOutcome,
        elapsed_ms: int,
        credential: Credential | None,
    ) -> ExtractionResult:
        if credential is not None:
            await self._credentials.report_outcome(
                credential.id,
                outcome.credential_signal or CredentialOutcome.OTHER_ERROR,
                outcome.message,
            )
        await self._governor.record_outcome(platform.value, False, elapsed_ms)
        logger.info(
            "Resolution failed on %s after %s: %s",
            platform.value,
            ", ".join(outcome.attempted) or "no strategies",
            outcome.error_code.value,
        )
        result = ExtractionResult.failure(outcome.error_code, outcome.message, platform)
        result.response_time_ms = elapsed_ms
        return result


def _merge(first: ChainOutcome, second: ChainOutcome) -> ChainOutcome:
    """Fold the unauthenticated attempt's errors into the retry's outcome."""
    second.errors = first.errors + second.errors
    second.messages = {**first.messages, **second.messages}
    second.attempted = first.attempted + second.attempted
    return second
