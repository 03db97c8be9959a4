"""
tests/conftest.py -- Shared fixtures for the loginkeep store tests.

This module provides:
  - settings: explicit Settings with a fixed SECRET_KEY and bcrypt cost 4
    (the minimum) so hashing does not dominate test time
  - clock: a FakeClock the stores read instead of the system clock, so
    expiry scenarios can jump days ahead without sleeping
  - engine: one in-memory SQLite engine shared by both stores (StaticPool,
    see auth.storage.create_db_engine), fresh per test
  - credentials / tokens / manager: stores and LoginManager wired to the above

Settings are built with _env_file=None so a developer's local .env never
leaks into the test run.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.engine import Engine

from auth.login import LoginManager
from auth.storage import create_db_engine
from auth.store import CredentialStore
from auth.tokens import LoginTokenStore
from core.config import Settings

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock. advance() moves time forward."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET_KEY,
        "password_hash_algo": "bcrypt",
        "password_hash_options": {"rounds": 4},
        "login_remember": timedelta(days=30),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def credentials(engine: Engine, settings: Settings, clock: FakeClock) -> CredentialStore:
    return CredentialStore(engine=engine, settings=settings, clock=clock)


@pytest.fixture
def tokens(engine: Engine, settings: Settings, clock: FakeClock) -> LoginTokenStore:
    return LoginTokenStore(engine=engine, settings=settings, clock=clock)


@pytest.fixture
def manager(credentials: CredentialStore, tokens: LoginTokenStore) -> LoginManager:
    return LoginManager(credentials, tokens)


@pytest.fixture
def settings_factory():
    """Return make_settings so a test can build Settings with overrides."""
    return make_settings
