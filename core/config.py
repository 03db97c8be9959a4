"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for loginkeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or pass a Settings instance to the stores explicitly (tests do this).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.
      Dict fields (password_hash_options) are parsed from JSON, timedelta fields
      (login_remember) from seconds or an ISO 8601 duration such as "P14D".

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the SECRET_KEY policy and the password policy bounds.

Security notes:
  SECRET_KEY keys the HMAC that hashes login-token verifiers. Rotating it
  invalidates every remember-me token in the database (users simply log in
  again). Shorter than 32 chars is rejected outright.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure. A random per-process key would silently log every
  remembered device out on restart.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("loginkeep.config")

# Algorithms accepted for password_hash_algo. auth/passwords.py owns the
# implementations; the names live here so Settings can fail fast at startup.
HASH_ALGORITHMS: frozenset[str] = frozenset({"bcrypt", "pbkdf2_sha256"})

# bcrypt only looks at the first 72 bytes of its input.
BCRYPT_MAX_BYTES = 72


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields except secret_key have defaults so Settings() can be built in
    test environments without a real .env file. Tests usually construct
    Settings(...) directly with explicit values instead of touching the
    environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///loginkeep.db"

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    password_hash_algo: str = "bcrypt"
    # Algorithm tuning, e.g. {"rounds": 12} for bcrypt. Empty dict = library defaults.
    password_hash_options: dict[str, int] = {}
    password_min: int = 8
    password_max: int = 32

    # ------------------------------------------------------------------
    # Identity records
    # ------------------------------------------------------------------

    # When true, username is mandatory and is the login identifier.
    login_use_username: bool = False
    email_case_insensitive: bool = True
    # Existence, uniqueness and ban checks skip soft-deleted users unless a
    # caller passes with_deleted=True.
    exclude_deleted: bool = True

    # ------------------------------------------------------------------
    # Remember-me tokens
    # ------------------------------------------------------------------

    login_remember: timedelta = timedelta(days=14)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Remember-me tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Remember-me tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_password_policy(self) -> "Settings":
        """Reject hashing and length settings that could never accept a password."""
        if self.password_hash_algo not in HASH_ALGORITHMS:
            raise ValueError(
                f"Unknown PASSWORD_HASH_ALGO {self.password_hash_algo!r}. " f"Expected one of {sorted(HASH_ALGORITHMS)}."
            )
        if self.password_min < 1:
            raise ValueError("PASSWORD_MIN must be at least 1.")
        if self.password_min > self.password_max:
            raise ValueError("PASSWORD_MIN must not exceed PASSWORD_MAX.")
        if self.password_hash_algo == "bcrypt" and self.password_max > BCRYPT_MAX_BYTES:
            raise ValueError(f"PASSWORD_MAX cannot exceed {BCRYPT_MAX_BYTES} with bcrypt.")
        if self.login_remember <= timedelta(0):
            raise ValueError("LOGIN_REMEMBER must be a positive duration.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def utcnow() -> datetime:
    """Default clock for the stores. Always timezone-aware UTC."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO 8601 string.

    Fixed width (microseconds always present, always +00:00) keeps string
    comparison in SQL equal to chronological comparison, so expiry checks can
    run as plain WHERE expires_at < :now clauses.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
