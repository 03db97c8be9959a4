"""
auth/tokens.py -- LoginTokenStore: persistent "remember me" tokens.

Security design decisions:
  Selector/verifier split: a token is two random values. The selector is
  stored in the clear behind a UNIQUE index and only locates the row. The
  verifier is the secret; only HMAC-SHA256(SECRET_KEY, verifier) is stored.
  The lookup is a cheap indexed equality match that never touches the
  secret, and the one security comparison happens afterwards, off the index,
  with hmac.compare_digest (constant time).

  HMAC instead of bcrypt for the verifier: verifiers carry 256 bits of
  entropy, so a slow KDF buys nothing, and validate() runs on every request
  that carries a remember-me cookie. Keying the HMAC with SECRET_KEY means a
  copied login_tokens table cannot be turned back into cookies.

  Not-found vs mismatch: both raise an InvalidTokenError subclass with the
  same message, and the not-found branch still runs a compare_digest against
  a dummy digest. Callers should only ever catch InvalidTokenError.

  Expiry extension, not re-keying: a successful validate() pushes
  expires_at forward and refreshes updated_at. selector and verifier_hash are
  never rewritten, so the same cookie keeps working across tabs and
  concurrent requests until it lapses or is revoked.

State machine per token:
  Active (expires_at in the future) -> Expired (still stored, validate fails)
  -> Deleted (revoke / purge). Nothing moves a token back to Active.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
This module never imports auth.store -- user_id is an opaque foreign key.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, String, Table
from sqlalchemy.engine import Engine

from auth.exceptions import ExpiredTokenError, TokenMismatchError, TokenNotFoundError
from auth.models import IssuedToken, LoginToken, LoginTokenSummary
from auth.storage import TableGateway, create_db_engine, metadata
from core.config import Settings, from_iso, get_settings, to_iso, utcnow

logger = logging.getLogger("loginkeep.tokens")

# 12 random bytes -> 24 hex chars. Uniqueness only; the selector is not secret.
SELECTOR_BYTES = 12
# 32 random bytes -> 64 hex chars, 256 bits of entropy.
VERIFIER_BYTES = 32

TOKEN_SEPARATOR = ":"

# Compared against when no row matches, so both failure paths do the same work.
_DUMMY_DIGEST = "0" * 64

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_login_tokens = Table(
    "login_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("selector", String(64), nullable=False, unique=True),
    Column("verifier_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def hash_verifier(verifier: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, verifier) as a hex string."""
    return hmac.new(secret_key.encode(), verifier.encode(), hashlib.sha256).hexdigest()


def split_token(value: str) -> tuple[str, str]:
    """Split a "selector:verifier" transport string.

    A malformed value is reported exactly like an unknown selector.
    """
    selector, sep, verifier = (value or "").strip().partition(TOKEN_SEPARATOR)
    if not sep or not selector or not verifier:
        raise TokenNotFoundError()
    return selector, verifier


class LoginTokenStore:
    """Repository for LoginToken rows and the remember-me lifecycle around them.

    Usage:
        tokens = LoginTokenStore(engine=credentials.engine)
        issued = tokens.issue(user_id)              # send issued.value to the client
        user_id = tokens.validate_value(cookie)     # extends expiry on success
        tokens.revoke(user_id)                      # drop expired tokens only
        tokens.revoke(user_id, expired_only=False)  # log out every device

    clock and token_factory stand in for the system clock and the secure
    random source; tests replace them to control time and token values.
    """

    def __init__(
        self,
        db_url: str | None = None,
        *,
        engine: Engine | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[int], str] = secrets.token_hex,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else create_db_engine(db_url or self._settings.database_url)
        metadata.create_all(self.engine)
        self._gateway = TableGateway(self.engine, _login_tokens)
        self._clock = clock
        self._token_factory = token_factory

    def _hash(self, verifier: str) -> str:
        return hash_verifier(verifier, self._settings.secret_key)

    def _lifetime(self, remember: timedelta | None) -> timedelta:
        lifetime = remember if remember is not None else self._settings.login_remember
        if lifetime <= timedelta(0):
            raise ValueError("remember duration must be positive")
        return lifetime

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def issue(self, user_id: int, remember: timedelta | None = None) -> IssuedToken:
        """Create a token for user_id valid for remember (default LOGIN_REMEMBER).

        The returned IssuedToken is the only place the plaintext verifier
        ever exists. Raises ConflictError on a selector collision.
        """
        selector = self._token_factory(SELECTOR_BYTES)
        verifier = self._token_factory(VERIFIER_BYTES)
        now = self._clock()
        expires_at = to_iso(now + self._lifetime(remember))
        token = LoginToken(
            user_id=user_id,
            selector=selector,
            verifier_hash=self._hash(verifier),
            expires_at=expires_at,
            created_at=to_iso(now),
            updated_at=to_iso(now),
        )
        token_id = self._gateway.insert_unique(
            user_id=token.user_id,
            selector=token.selector,
            verifier_hash=token.verifier_hash,
            expires_at=token.expires_at,
            created_at=token.created_at,
            updated_at=token.updated_at,
        )
        logger.info("Issued login token id=%s for user id=%s (expires %s)", token_id, user_id, expires_at)
        return IssuedToken(id=token_id, user_id=user_id, selector=selector, verifier=verifier, expires_at=expires_at)

    def check(self, selector: str, verifier: str) -> LoginToken:
        """Check a presented selector/verifier pair without touching the row.

        Returns the stored LoginToken. Raises:
          TokenNotFoundError  -- no row for selector      } both InvalidTokenError,
          TokenMismatchError  -- verifier does not match  } same message
          ExpiredTokenError   -- pair matched but expires_at has passed

        Callers that still have to vet the owner (LoginManager) call
        extend() only once those checks pass.
        """
        row = self._gateway.find_by_unique_key("selector", selector)
        presented = self._hash(verifier)
        if row is None:
            hmac.compare_digest(presented, _DUMMY_DIGEST)
            logger.debug("Login token rejected: unknown selector %.24r", selector)
            raise TokenNotFoundError()
        token = _row_to_token(row)
        if not hmac.compare_digest(presented, token.verifier_hash):
            logger.debug("Login token rejected: verifier mismatch for token id=%s", token.id)
            raise TokenMismatchError()
        if from_iso(token.expires_at) <= self._clock():
            logger.debug("Login token id=%s expired at %s", token.id, token.expires_at)
            raise ExpiredTokenError()
        return token

    def check_value(self, value: str) -> LoginToken:
        """check() for the single-string "selector:verifier" form."""
        selector, verifier = split_token(value)
        return self.check(selector, verifier)

    def extend(self, token_id: int, remember: timedelta | None = None) -> str:
        """Push expires_at to now + remember and refresh updated_at. Returns the new expiry."""
        now = self._clock()
        expires_at = to_iso(now + self._lifetime(remember))
        # Zero rows matched means a concurrent revoke won; the token is gone
        # for the next request either way.
        self._gateway.update_by_id(token_id, expires_at=expires_at, updated_at=to_iso(now))
        return expires_at

    def validate(self, selector: str, verifier: str, remember: timedelta | None = None) -> int:
        """check() the pair and extend the token on success. Returns the owning user_id."""
        token = self.check(selector, verifier)
        self.extend(token.id, remember)
        return token.user_id

    def validate_value(self, value: str, remember: timedelta | None = None) -> int:
        """validate() for the single-string "selector:verifier" form."""
        selector, verifier = split_token(value)
        return self.validate(selector, verifier, remember=remember)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def get_all_by_user(self, user_id: int) -> list[LoginTokenSummary]:
        """Return every stored token for user_id (active and expired), newest first."""
        c = self._gateway.c
        rows = self._gateway.select_where(
            c.user_id == user_id,
            columns=[c.id, c.selector, c.expires_at, c.created_at, c.updated_at],
            order_by=c.id.desc(),
        )
        return [
            LoginTokenSummary(
                id=r.id,
                selector=r.selector,
                expires_at=r.expires_at,
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for r in rows
        ]

    def revoke(self, user_id: int, expired_only: bool = True) -> int:
        """Delete tokens for user_id. Returns the number of rows removed.

        expired_only=True (the default) is passive cleanup: only tokens whose
        expires_at has passed go. expired_only=False logs the user out on
        every device. The mode is always explicit so routine cleanup can never
        turn into a global logout by accident.
        """
        c = self._gateway.c
        conditions = [c.user_id == user_id]
        if expired_only:
            conditions.append(c.expires_at <= to_iso(self._clock()))
        removed = self._gateway.delete_where(*conditions)
        if removed:
            logger.info("Revoked %d login token(s) for user id=%s (expired_only=%s)", removed, user_id, expired_only)
        return removed

    def revoke_token(self, user_id: int, token_id: int) -> bool:
        """Delete one token ("log out this device").

        user_id is checked so one user cannot revoke another user's token by
        guessing ids.
        """
        c = self._gateway.c
        return self._gateway.delete_where(c.id == token_id, c.user_id == user_id) > 0

    def purge_expired(self) -> int:
        """Delete expired tokens for all users. Returns number of rows removed."""
        c = self._gateway.c
        removed = self._gateway.delete_where(c.expires_at <= to_iso(self._clock()))
        if removed:
            logger.info("Purged %d expired login token(s)", removed)
        return removed

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_token(row) -> LoginToken:
    return LoginToken(
        id=row.id,
        user_id=row.user_id,
        selector=row.selector,
        verifier_hash=row.verifier_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
