from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from mediafetch.core.config import Settings
from mediafetch.main import create_app
from mediafetch.models.credential import Credential, CredentialTier

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for time-dependent services."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_credential(**kwargs) -> Credential:
    defaults = dict(
        id="cred-1",
        platform="facebook",
        tier=CredentialTier.PUBLIC,
        secret="c_user=1; xs=abc",
        created_at=T0,
        updated_at=T0,
    )
    return Credential(**{**defaults, **kwargs})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cache_backend="memory",
        http_max_retries=2,
        stats_flush_every=3,
        credential_cooldown_minutes=30,
    )


@pytest.fixture
def mongo_db():
    """Fresh in-memory MongoDB database per test."""
    return AsyncMongoMockClient()["mediafetch_test"]


@pytest.fixture
def resolver_mock() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(settings, resolver_mock):
    """TestClient whose lifespan builds a container around a mocked resolver."""
    container = MagicMock()
    container.resolver = resolver_mock
    container.close = AsyncMock()
    with patch(
        "mediafetch.main.Container.build",
        new_callable=AsyncMock,
        return_value=container,
    ):
        with TestClient(create_app(settings)) as c:
            yield c
