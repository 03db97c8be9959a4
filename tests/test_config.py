"""Unit tests for core/config.py.

Covers:
- SECRET_KEY policy: required in production, generated in DEBUG, >= 32 chars
- password policy validation fails fast at startup
- environment parsing for JSON dicts and durations
- fixed-width ISO 8601 timestamps compare chronologically as strings
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from core.config import Settings, from_iso, get_settings, to_iso

KEY = "k" * 32


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "SECRET_KEY",
        "DEBUG",
        "DATABASE_URL",
        "PASSWORD_HASH_ALGO",
        "PASSWORD_HASH_OPTIONS",
        "PASSWORD_MIN",
        "PASSWORD_MAX",
        "LOGIN_USE_USERNAME",
        "LOGIN_REMEMBER",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# SECRET_KEY
# ---------------------------------------------------------------------------


class TestSecretKey:
    def test_missing_key_fails_in_production(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None)

    def test_debug_generates_a_key(self) -> None:
        settings = Settings(_env_file=None, debug=True)
        assert len(settings.secret_key) == 64

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(_env_file=None, secret_key="too-short")

    def test_key_read_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", KEY)
        assert get_settings().secret_key == KEY
        assert get_settings() is get_settings()


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------


class TestPasswordPolicy:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None, secret_key=KEY)
        assert settings.password_hash_algo == "bcrypt"
        assert (settings.password_min, settings.password_max) == (8, 32)
        assert settings.login_remember == timedelta(days=14)
        assert settings.exclude_deleted is True

    def test_unknown_algorithm(self) -> None:
        with pytest.raises(ValidationError, match="Unknown PASSWORD_HASH_ALGO"):
            Settings(_env_file=None, secret_key=KEY, password_hash_algo="md5")

    def test_min_above_max(self) -> None:
        with pytest.raises(ValidationError, match="must not exceed"):
            Settings(_env_file=None, secret_key=KEY, password_min=20, password_max=10)

    def test_zero_min(self) -> None:
        with pytest.raises(ValidationError, match="at least 1"):
            Settings(_env_file=None, secret_key=KEY, password_min=0)

    def test_bcrypt_cannot_accept_more_than_72(self) -> None:
        with pytest.raises(ValidationError, match="cannot exceed 72"):
            Settings(_env_file=None, secret_key=KEY, password_max=100)

    def test_pbkdf2_allows_long_passwords(self) -> None:
        settings = Settings(_env_file=None, secret_key=KEY, password_hash_algo="pbkdf2_sha256", password_max=128)
        assert settings.password_max == 128

    def test_non_positive_remember(self) -> None:
        with pytest.raises(ValidationError, match="positive duration"):
            Settings(_env_file=None, secret_key=KEY, login_remember=timedelta(0))


# ---------------------------------------------------------------------------
# Environment parsing
# ---------------------------------------------------------------------------


class TestEnvironment:
    def test_complex_values_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", KEY)
        monkeypatch.setenv("PASSWORD_HASH_OPTIONS", '{"rounds": 10}')
        monkeypatch.setenv("LOGIN_REMEMBER", "P7D")
        monkeypatch.setenv("LOGIN_USE_USERNAME", "true")
        settings = Settings(_env_file=None)
        assert settings.password_hash_options == {"rounds": 10}
        assert settings.login_remember == timedelta(days=7)
        assert settings.login_use_username is True


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


class TestTimestamps:
    def test_fixed_width_and_utc(self) -> None:
        local = datetime(2026, 3, 1, 8, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert to_iso(local) == "2026-03-01T13:00:00.000000+00:00"
        assert len(to_iso(datetime(2026, 3, 1, 13, 0, 0, 123, tzinfo=timezone.utc))) == 32

    def test_naive_datetime_is_treated_as_utc(self) -> None:
        assert to_iso(datetime(2026, 3, 1)) == "2026-03-01T00:00:00.000000+00:00"

    def test_round_trip(self) -> None:
        moment = datetime(2026, 3, 1, 13, 0, 0, 500, tzinfo=timezone.utc)
        assert from_iso(to_iso(moment)) == moment

    def test_string_order_is_chronological(self) -> None:
        earlier = datetime(2026, 3, 1, 9, 59, 59, 999999, tzinfo=timezone.utc)
        later = earlier + timedelta(microseconds=1)
        assert to_iso(earlier) < to_iso(later)
