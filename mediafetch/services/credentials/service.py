from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from mediafetch.core.clock import Clock, utcnow
from mediafetch.core.config import Settings
from mediafetch.models.credential import (
    Credential,
    CredentialCreate,
    CredentialOutcome,
    CredentialStatus,
    CredentialTestResult,
    CredentialTier,
)
from mediafetch.repositories.credentials.repository import CredentialRepository
from mediafetch.services.credentials.cookies import (
    InvalidCookieError,
    parse_cookie,
    validate_cookie,
)
from mediafetch.workers.fetcher import DEFAULT_USER_AGENT, Fetcher, FetchError

logger = logging.getLogger(__name__)

_WINDOW = timedelta(hours=1)
_NEVER = datetime.min.replace(tzinfo=timezone.utc)

HEALTH_CHECK_URLS: dict[str, str] = {
    "facebook": "https://www.facebook.com/me",
    "instagram": "https://www.instagram.com/accounts/edit/",
    "twitter": "https://x.com/settings/account",
    "weibo": "https://weibo.com/ajax/profile/info",
}

_LOGIN_WALL_MARKERS = ("login_form", "Log in to Facebook", '"viewer":null')


class CredentialPool:
    """Rotating pool of platform cookies.

    Selection is least-recently-used among healthy credentials that are
    under their hourly quota.  Every status change is a compare-and-set in
    the repository, so two holders reporting the same rate limit move the
    credential into cooldown exactly once.
    """

    def __init__(
        self,
        repo: CredentialRepository,
        fetcher: Fetcher,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._fetcher = fetcher
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def acquire(
        self,
        platform: str,
        tier: CredentialTier = CredentialTier.PUBLIC,
        principal: str | None = None,
    ) -> Credential | None:
        """Claim the least recently used eligible credential, or ``None``."""
        if tier is CredentialTier.PRIVATE and not principal:
            return None
        now = self._clock()
        candidates = await self._repo.find(
            platform=platform,
            tier=tier.value,
            owner=principal if tier is CredentialTier.PRIVATE else None,
            statuses=(CredentialStatus.HEALTHY, CredentialStatus.COOLDOWN),
        )

        eligible: list[Credential] = []
        for credential in candidates:
            if tier is CredentialTier.PRIVATE and credential.owner != principal:
                continue
            if credential.status is CredentialStatus.COOLDOWN:
                credential = await self._reconcile_cooldown(credential, now)
                if credential is None:
                    continue
            if len(self._recent_uses(credential, now)) >= credential.max_uses_per_hour:
                continue
            eligible.append(credential)

        eligible.sort(key=lambda c: (c.last_used_at or _NEVER, c.use_count))
        for credential in eligible:
            recent = self._recent_uses(credential, now) + [now]
            claimed = await self._repo.claim(credential, now, recent)
            if claimed is not None:
                logger.info(
                    "Acquired %s credential %s (%d/%d this hour)",
                    platform,
                    claimed.id,
                    len(recent),
                    claimed.max_uses_per_hour,
                )
                return claimed
            logger.debug("Lost claim race on credential %s", credential.id)
        return None

    async def has_usable(self, platform: str, principal: str | None = None) -> bool:
        """Whether any non-terminal credential could serve *principal*."""
        credentials = await self._repo.find(
            platform=platform,
            statuses=(CredentialStatus.HEALTHY, CredentialStatus.COOLDOWN),
        )
        return any(
            c.tier is CredentialTier.PUBLIC or (principal and c.owner == principal)
            for c in credentials
        )

    async def _reconcile_cooldown(
        self, credential: Credential, now: datetime
    ) -> Credential | None:
        if credential.cooldown_until is not None and credential.cooldown_until > now:
            return None
        promoted = await self._repo.transition(
            credential.id,
            (CredentialStatus.COOLDOWN,),
            {
                "status": CredentialStatus.HEALTHY.value,
                "cooldown_until": None,
                "updated_at": now,
            },
            version=credential.version,
        )
        if promoted is not None:
            logger.info("Credential %s left cooldown", credential.id)
        return promoted

    @staticmethod
    def _recent_uses(credential: Credential, now: datetime) -> list[datetime]:
        cutoff = now - _WINDOW
        return [used for used in credential.recent_uses if used > cutoff]

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    async def report_outcome(
        self,
        credential_id: str,
        outcome: CredentialOutcome,
        error: str | None = None,
    ) -> Credential | None:
        now = self._clock()
        if outcome is CredentialOutcome.SUCCESS:
            return await self._repo.increment(
                credential_id,
                {"success_count": 1, "use_count": 1},
                {"last_error": None, "updated_at": now},
            )

        if outcome is CredentialOutcome.RATE_LIMITED:
            cooldown = timedelta(minutes=self._settings.credential_cooldown_minutes)
            updated = await self._repo.transition(
                credential_id,
                (CredentialStatus.HEALTHY,),
                {
                    "status": CredentialStatus.COOLDOWN.value,
                    "cooldown_until": now + cooldown,
                    "last_error": error or "Rate limited",
                    "updated_at": now,
                },
                inc={"error_count": 1},
            )
            if updated is None:
                logger.debug("Rate limit on %s already recorded", credential_id)
            else:
                logger.warning(
                    "Credential %s cooling down until %s",
                    credential_id,
                    updated.cooldown_until,
                )
            return updated

        if outcome is CredentialOutcome.EXPIRED:
            updated = await self._repo.transition(
                credential_id,
                (CredentialStatus.HEALTHY, CredentialStatus.COOLDOWN),
                {
                    "status": CredentialStatus.EXPIRED.value,
                    "last_error": error or "Session expired",
                    "updated_at": now,
                },
                inc={"error_count": 1},
            )
            if updated is not None:
                logger.warning("Credential %s marked expired", credential_id)
            return updated

        return await self._repo.increment(
            credential_id,
            {"error_count": 1},
            {"last_error": error or "Unknown error", "updated_at": now},
        )

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def test(self, credential_id: str) -> CredentialTestResult:
        """Check the credential against the platform; usage counters are untouched."""
        credential = await self._repo.get(credential_id)
        if credential is None:
            return CredentialTestResult(healthy=False, error="Credential not found")
        check_url = HEALTH_CHECK_URLS.get(credential.platform.value)
        if check_url is None:
            return CredentialTestResult(healthy=True)

        try:
            response = await self._fetcher.get(
                check_url,
                headers={"Cookie": credential.secret, "User-Agent": DEFAULT_USER_AGENT},
            )
        except FetchError as exc:
            return CredentialTestResult(healthy=False, error=str(exc))

        final_url = str(response.url)
        if response.status_code in (401, 403) or "/login" in final_url:
            return CredentialTestResult(
                healthy=False,
                error="Session expired",
                status_code=response.status_code,
            )
        if "/checkpoint/" in final_url:
            return CredentialTestResult(
                healthy=False,
                error="Checkpoint required",
                status_code=response.status_code,
            )
        if any(marker in response.text for marker in _LOGIN_WALL_MARKERS):
            return CredentialTestResult(
                healthy=False, error="Session expired", status_code=response.status_code
            )
        if response.status_code >= 400:
            return CredentialTestResult(
                healthy=False,
                error=f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return CredentialTestResult(healthy=True, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def add(self, data: CredentialCreate) -> Credential:
        """Register a credential.

        Raises:
            InvalidCookieError: when the cookie cannot be parsed or lacks
                the platform's session cookies, or a private credential has
                no owner.
        """
        secret = parse_cookie(data.secret, data.platform.value)
        missing = validate_cookie(secret, data.platform.value)
        if missing:
            raise InvalidCookieError(f"Missing required cookies: {', '.join(missing)}")
        if data.tier is CredentialTier.PRIVATE and not data.owner:
            raise InvalidCookieError("Private credentials need an owner")
        now = self._clock()
        credential = Credential(
            id=uuid4().hex,
            platform=data.platform,
            tier=data.tier,
            owner=data.owner if data.tier is CredentialTier.PRIVATE else None,
            secret=secret,
            label=data.label,
            max_uses_per_hour=(
                data.max_uses_per_hour or self._settings.credential_max_uses_per_hour
            ),
            created_at=now,
            updated_at=now,
        )
        await self._repo.insert(credential)
        logger.info("Added %s credential %s", credential.platform.value, credential.id)
        return credential

    async def set_status(
        self, credential_id: str, status: CredentialStatus
    ) -> Credential | None:
        """Operator override, e.g. re-enable an expired cookie after refresh."""
        return await self._repo.transition(
            credential_id,
            tuple(CredentialStatus),
            {
                "status": status.value,
                "cooldown_until": None,
                "updated_at": self._clock(),
            },
        )

    async def list_credentials(self, platform: str | None = None) -> list[Credential]:
        return await self._repo.find(platform=platform)

    async def delete(self, credential_id: str) -> bool:
        return await self._repo.delete(credential_id)
