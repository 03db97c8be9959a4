"""
auth/login.py -- LoginManager: the password and remember-me login flows.

Wires CredentialStore and LoginTokenStore together the way an enclosing web
app would: verify a password, refuse banned users, record the login, and
hand out a remember-me token when asked. Cookie handling stays with the
caller; this module only deals in the "selector:verifier" string.

Timing equalization: login() always runs one password verify, against a
dummy hash when the identifier is unknown, so response time does not reveal
which emails or usernames are registered. Unknown identifier and wrong
password raise the same InvalidCredentialsError.

Ban check order: the ban is reported only after the password verified, so
the ban flag cannot be probed without the password.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.exceptions import AccountBannedError, InvalidCredentialsError, TokenNotFoundError, ValidationError
from auth.models import IssuedToken, User
from auth.store import CredentialStore
from auth.tokens import LoginTokenStore

logger = logging.getLogger("loginkeep.login")


@dataclass(frozen=True)
class LoginResult:
    user: User
    token: IssuedToken | None = None


class LoginManager:
    """Password login, token login and logout on top of the two stores."""

    def __init__(self, credentials: CredentialStore, tokens: LoginTokenStore, use_username: bool | None = None) -> None:
        self.credentials = credentials
        self.tokens = tokens
        # Defaults to LOGIN_USE_USERNAME from the credential store's settings.
        self.use_username = credentials.settings.login_use_username if use_username is None else use_username

    def _find(self, identifier: str) -> User | None:
        if self.use_username:
            return self.credentials.get_by_username(identifier)
        return self.credentials.get_by_email(identifier)

    def login(
        self, identifier: str, password: str, remember: bool = False, duration: timedelta | None = None
    ) -> LoginResult:
        """Authenticate with email (or username) and password.

        Raises InvalidCredentialsError or AccountBannedError. On success the
        last-login stamp is written, an outdated hash is upgraded in place,
        and a remember-me token is issued if remember is set.
        """
        user = self._find(identifier)
        if user is None:
            # Equalize timing -- do NOT return early before hashing
            self.credentials.equalize_timing(password)
            raise InvalidCredentialsError()
        if not self.credentials.verify_password(user, password):
            logger.info("Failed login for user id=%s", user.id)
            raise InvalidCredentialsError()
        if user.banned:
            logger.info("Banned user id=%s refused at login", user.id)
            raise AccountBannedError()

        self.credentials.update_last_login(user.id)
        if self.credentials.password_needs_rehash(user):
            try:
                self.credentials.update(user.id, password=password)
            except ValidationError:
                logger.warning("Password for user id=%s no longer fits the length policy; hash not upgraded", user.id)
            else:
                logger.info("Re-hashed password for user id=%s under the current policy", user.id)

        token = self.tokens.issue(user.id, remember=duration) if remember else None
        return LoginResult(user=user, token=token)

    def login_with_token(self, value: str) -> int:
        """Authenticate with a remember-me "selector:verifier" string.

        Returns the user id. The token must be valid and unexpired (see
        LoginTokenStore.check) and its owner must still exist and not be
        banned. A token whose user was deleted is reported as invalid.
        The token is extended only after the owner passed those checks; a
        refused presentation leaves expires_at as it was.
        """
        token = self.tokens.check_value(value)
        if not self.credentials.exists_by_id(token.user_id):
            logger.info("Login token for missing or deleted user id=%s refused", token.user_id)
            raise TokenNotFoundError()
        if self.credentials.is_banned(token.user_id):
            logger.info("Banned user id=%s refused at token login", token.user_id)
            raise AccountBannedError()
        self.tokens.extend(token.id)
        self.credentials.update_last_activity(token.user_id)
        return token.user_id

    def logout(self, user_id: int, everywhere: bool = False) -> int:
        """Revoke tokens for user_id: expired ones only, or all with everywhere=True."""
        return self.tokens.revoke(user_id, expired_only=not everywhere)
