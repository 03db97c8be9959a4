"""
auth/exceptions.py -- Typed failures raised by the credential and token stores.

Callers (a web login route, the CLI) catch these and map them to their own
surface. Two rules the hierarchy encodes:

  TokenNotFoundError and TokenMismatchError both subclass InvalidTokenError
  and carry the same message. Callers should catch InvalidTokenError only;
  the subclasses exist so the store can log which branch fired at DEBUG
  level. Exposing the difference would let a client enumerate selectors.

  ValidationError carries a field -> reason dict so a form can re-prompt
  each field. ConflictError means the database unique index refused a row
  that passed validation -- a concurrent writer won. Retrying after a fresh
  existence check is the recovery.

Layer rule: no imports from anywhere in the project. auth/storage.py raises
ConflictError, so this module must stay dependency-free.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all credential and token errors."""

    def __init__(self, message: str = "Authentication error"):
        self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """One or more submitted fields broke the identity or password policy."""

    def __init__(self, errors: dict[str, str], message: str = "Validation failed"):
        self.errors = dict(errors)
        super().__init__(message)

    def __str__(self) -> str:
        detail = "; ".join(f"{field}: {reason}" for field, reason in self.errors.items())
        return f"{self.message} ({detail})" if detail else self.message


class ConflictError(AuthError):
    """A storage-level unique constraint rejected the write."""

    def __init__(self, message: str = "Record conflicts with an existing record"):
        super().__init__(message)


_INVALID_TOKEN_MESSAGE = "Invalid login token"


class InvalidTokenError(AuthError):
    """A presented remember-me token is not valid."""

    def __init__(self, message: str = _INVALID_TOKEN_MESSAGE):
        super().__init__(message)


class TokenNotFoundError(InvalidTokenError):
    """No token row matches the presented selector."""


class TokenMismatchError(InvalidTokenError):
    """The selector matched but the verifier did not."""


class ExpiredTokenError(AuthError):
    """The token matched but its expires_at has passed."""

    def __init__(self, message: str = "Login token has expired"):
        super().__init__(message)


class InvalidCredentialsError(AuthError):
    """Raised when the identifier or password is incorrect during login."""

    def __init__(self, message: str = "Invalid login or password"):
        super().__init__(message)


class AccountBannedError(AuthError):
    """Raised when a banned user presents correct credentials or a valid token."""

    def __init__(self, message: str = "Account is banned"):
        super().__init__(message)
