"""
auth/models.py -- Domain dataclasses for credential and login-token entities.

Pattern: Data class (pure data container, zero logic). Stores do the work;
these only describe shape. Timestamps are ISO 8601 UTC strings exactly as
stored (see core.config.to_iso).

Layer rule: no imports from anywhere else in the project.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An identity record owned by CredentialStore.

    password_hash is the full hasher output (algorithm and parameters are
    embedded in the string, e.g. "$2b$12$..." or "$pbkdf2-sha256$..."). The
    plaintext password is never held by this object.

    username is None unless supplied or required by LOGIN_USE_USERNAME.
    """

    email: str
    password_hash: str
    id: int | None = None
    username: str | None = None
    banned: bool = False
    deleted: bool = False
    last_login: str | None = None
    last_activity: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class LoginToken:
    """A persisted remember-me token row.

    Security design:
    - selector is a non-secret random value with a UNIQUE index. Lookup by
      selector is a cheap equality match that reveals nothing secret.
    - verifier_hash is HMAC-SHA256(SECRET_KEY, verifier). The verifier itself
      is returned to the client once by LoginTokenStore.issue() and never
      persisted. A leaked table row cannot be replayed as a cookie.
    """

    user_id: int
    selector: str
    verifier_hash: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class LoginTokenSummary:
    """Management view of a token ("log out other devices"). Never carries the hash."""

    id: int
    selector: str
    expires_at: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class IssuedToken:
    """The plaintext selector/verifier pair, returned exactly once at issue time."""

    id: int
    user_id: int
    selector: str
    verifier: str
    expires_at: str

    @property
    def value(self) -> str:
        """Single-string transport form ("selector:verifier"), e.g. a cookie value."""
        return f"{self.selector}:{self.verifier}"
