"""
auth/store.py -- CredentialStore: identity records and password policy.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user is the mapper. Row access goes through auth.storage.TableGateway,
so this module only decides WHAT to read and write.

Policy enforced here:
  email     required, a bare valid address (no "Name <addr>" form), unique
            among non-deleted users
            (lower-cased first when EMAIL_CASE_INSENSITIVE is on)
  username  optional unless LOGIN_USE_USERNAME; letters, digits and spaces,
            at least 3 chars, unique among non-deleted users
  password  PASSWORD_MIN..PASSWORD_MAX chars (and within the hasher's byte
            limit), hashed with the configured algorithm before persistence

Uniqueness:
  Validation checks for an existing live row (ignoring the row being
  updated -- "unique except self") so users get a field-level error. The
  partial unique indexes (WHERE deleted = 0) are the real guarantee: if a
  concurrent request wins the race, the index rejects the second write and
  the gateway raises ConflictError.

Hash-on-write:
  _prepare_write() is the single place a plaintext password becomes
  password_hash, and it only acts when a "password" key is in the payload.
  An update without a password never touches the stored hash. Hashing runs
  before the gateway opens a connection.

Bookkeeping:
  update_last_login() / update_last_activity() never raise. A failed
  timestamp write is logged and the surrounding login carries on.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Annotated

from pydantic import EmailStr, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Column, Index, Integer, String, Table, Text, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.exceptions import AuthError, ValidationError
from auth.models import User
from auth.passwords import get_hasher, verify_any
from auth.storage import TableGateway, create_db_engine, metadata
from core.config import Settings, get_settings, to_iso, utcnow

logger = logging.getLogger("loginkeep.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_LIVE = text("deleted = 0")

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(254), nullable=False),
    Column("username", String(100)),  # NULL when not supplied; NULLs never collide
    Column("password_hash", Text, nullable=False),
    Column("banned", Integer, nullable=False, server_default="0"),
    Column("deleted", Integer, nullable=False, server_default="0"),  # soft-delete flag
    Column("last_login", String(32)),
    Column("last_activity", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    # Partial unique indexes: a soft-deleted row releases its email/username.
    Index("uq_users_email_live", "email", unique=True, sqlite_where=_LIVE, postgresql_where=_LIVE),
    Index("uq_users_username_live", "username", unique=True, sqlite_where=_LIVE, postgresql_where=_LIVE),
)

# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

# alpha_numeric_space: letters, digits and the space character only.
USERNAME_PATTERN = r"^[A-Za-z0-9 ]+$"

_email_adapter = TypeAdapter(EmailStr)
_username_adapter = TypeAdapter(Annotated[str, Field(pattern=USERNAME_PATTERN, min_length=3, max_length=100)])

_UPDATABLE_FIELDS = frozenset({"email", "username", "password"})

MSG_EMAIL_REQUIRED = "Email address is required."
MSG_EMAIL_INVALID = "Email address is invalid."
MSG_EMAIL_EXISTS = "Email address already exists."
MSG_USERNAME_REQUIRED = "Username is required."
MSG_USERNAME_INVALID = "Username must be at least 3 characters: letters, digits and spaces only."
MSG_USERNAME_EXISTS = "Username already exists."
MSG_PASSWORD_REQUIRED = "Password is required."


class CredentialStore:
    """Repository for User records plus the password policy around them.

    Usage:
        store = CredentialStore("sqlite:///loginkeep.db")
        user_id = store.create("alice@example.com", "s3cret-pass", username="alice")
        store.update(user_id, username="alice b")     # password hash untouched
        store.is_banned(user_id)                      # False
        store.close()

    with_deleted=None on the query methods means "follow
    Settings.exclude_deleted"; pass True/False to override per call.
    """

    def __init__(
        self,
        db_url: str | None = None,
        *,
        engine: Engine | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else create_db_engine(db_url or self._settings.database_url)
        metadata.create_all(self.engine)
        self._gateway = TableGateway(self.engine, _users, deleted_column="deleted")
        self._clock = clock
        self._hasher = get_hasher(self._settings.password_hash_algo, self._settings.password_hash_options)
        # Precompute the dummy hash so unknown-user logins cost exactly one verify.
        self._hasher.warm_up()
        self._password_adapter = TypeAdapter(
            Annotated[str, Field(min_length=self._settings.password_min, max_length=self._settings.password_max)]
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    def _live(self, with_deleted: bool | None) -> list:
        if with_deleted is None:
            with_deleted = not self._settings.exclude_deleted
        return self._gateway.live_only(with_deleted)

    def _normalize_email(self, email: str) -> str:
        email = email.strip()
        return email.lower() if self._settings.email_case_insensitive else email

    def _taken(self, column: str, value: str, exclude_id: int | None) -> bool:
        """Return True if a live user other than exclude_id already holds value."""
        c = self._gateway.c
        conditions = [c[column] == value, *self._gateway.live_only()]
        if exclude_id is not None:
            conditions.append(c.id != exclude_id)
        return self._gateway.count_where(*conditions) > 0

    def _password_error(self, password: str) -> str | None:
        s = self._settings
        message = f"Password must be between {s.password_min} and {s.password_max} characters."
        try:
            self._password_adapter.validate_python(password)
        except PydanticValidationError:
            return message
        max_bytes = self._hasher.max_bytes
        if max_bytes is not None and len(password.encode("utf-8")) > max_bytes:
            return message
        return None

    def _validate(self, fields: dict, user_id: int | None = None) -> dict:
        """Check the supplied fields against the policy and return cleaned values.

        On create (user_id is None) email and password are mandatory, and so
        is username when LOGIN_USE_USERNAME is on. On update only keys present
        in fields are checked; user_id's own row is exempt from uniqueness.

        Raises ValidationError listing every failing field.
        """
        creating = user_id is None
        errors: dict[str, str] = {}
        clean: dict = {}

        if "email" in fields or creating:
            email = fields.get("email") or ""
            email = self._normalize_email(email) if isinstance(email, str) else ""
            if not email:
                errors["email"] = MSG_EMAIL_REQUIRED
            else:
                try:
                    validated = _email_adapter.validate_python(email)
                except PydanticValidationError:
                    validated = None
                # EmailStr also accepts "Name <addr>" and returns just addr;
                # only a bare address is stored.
                if validated is None or validated.lower() != email.lower():
                    errors["email"] = MSG_EMAIL_INVALID
                else:
                    if self._taken("email", email, user_id):
                        errors["email"] = MSG_EMAIL_EXISTS
                    else:
                        clean["email"] = email

        if "username" in fields or (creating and self._settings.login_use_username):
            username = fields.get("username")
            if not username:
                if self._settings.login_use_username:
                    errors["username"] = MSG_USERNAME_REQUIRED
                elif "username" in fields:
                    clean["username"] = None
            else:
                try:
                    _username_adapter.validate_python(username)
                except PydanticValidationError:
                    errors["username"] = MSG_USERNAME_INVALID
                else:
                    if self._taken("username", username, user_id):
                        errors["username"] = MSG_USERNAME_EXISTS
                    else:
                        clean["username"] = username

        if "password" in fields or creating:
            password = fields.get("password")
            if not password:
                errors["password"] = MSG_PASSWORD_REQUIRED
            else:
                reason = self._password_error(password)
                if reason:
                    errors["password"] = reason
                else:
                    clean["password"] = password

        if errors:
            raise ValidationError(errors)
        return clean

    def _prepare_write(self, clean: dict) -> dict:
        """Turn validated input into column values. Hashes only when password is present."""
        values = dict(clean)
        if "password" in values:
            values["password_hash"] = self._hasher.hash(values.pop("password"))
        return values

    def _bookkeeping(self, user_id: int, **values) -> None:
        try:
            self._gateway.update_by_id(user_id, **values)
        except (SQLAlchemyError, AuthError):
            logger.warning("Could not record %s for user id=%s", "/".join(values), user_id, exc_info=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, email: str, password: str, username: str | None = None) -> int:
        """Validate, hash and insert a new user. Returns the new user id.

        Raises ValidationError on a policy violation and ConflictError if a
        concurrent insert claimed the email or username first.
        """
        fields: dict = {"email": email, "password": password}
        if username is not None:
            fields["username"] = username
        values = self._prepare_write(self._validate(fields))
        now = self._now_iso()
        user_id = self._gateway.insert_unique(**values, banned=0, deleted=0, created_at=now, updated_at=now)
        logger.info("Created user id=%s", user_id)
        return user_id

    def update(self, user_id: int, **fields) -> bool:
        """Validate and apply the supplied fields to a live user.

        Accepted fields: email, username, password. Only supplied fields are
        validated and written; the password is re-hashed only when given.

        Returns True if a row was updated, False if user_id is unknown or
        soft-deleted. Raises ValidationError / ConflictError like create().
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return self.exists_by_id(user_id, with_deleted=False)
        values = self._prepare_write(self._validate(fields, user_id))
        values["updated_at"] = self._now_iso()
        updated = self._gateway.update_by_id(user_id, *self._gateway.live_only(), **values) > 0
        if updated:
            logger.info("Updated user id=%s fields=%s", user_id, sorted(fields))
        return updated

    def ban(self, user_id: int) -> bool:
        """Set the banned flag. Returns False if no live user matched."""
        return self._set_flag(user_id, banned=1)

    def unban(self, user_id: int) -> bool:
        return self._set_flag(user_id, banned=0)

    def _set_flag(self, user_id: int, **values) -> bool:
        values["updated_at"] = self._now_iso()
        changed = self._gateway.update_by_id(user_id, *self._gateway.live_only(), **values) > 0
        if changed:
            logger.info("User id=%s flags set: %s", user_id, {k: v for k, v in values.items() if k != "updated_at"})
        return changed

    def delete(self, user_id: int, purge: bool = False) -> bool:
        """Soft-delete a user (or remove the row entirely with purge=True).

        A soft-deleted user frees its email and username for new accounts and
        disappears from existence and ban checks. Login tokens are left in
        place; the login flow refuses tokens that belong to deleted users.
        """
        if purge:
            removed = self._gateway.delete_where(self._gateway.c.id == user_id) > 0
        else:
            removed = (
                self._gateway.update_by_id(
                    user_id, self._gateway.c.deleted == 0, deleted=1, updated_at=self._now_iso()
                )
                > 0
            )
        if removed:
            logger.info("Deleted user id=%s (purge=%s)", user_id, purge)
        return removed

    def restore(self, user_id: int) -> bool:
        """Clear the soft-delete flag.

        Raises ConflictError if another live user has since taken the email
        or username.
        """
        return (
            self._gateway.update_by_id(user_id, self._gateway.c.deleted == 1, deleted=0, updated_at=self._now_iso())
            > 0
        )

    def update_last_login(self, user_id: int) -> None:
        """Stamp last_login and last_activity. Never raises."""
        now = self._now_iso()
        self._bookkeeping(user_id, last_login=now, last_activity=now)

    def update_last_activity(self, user_id: int) -> None:
        """Stamp last_activity. Never raises."""
        self._bookkeeping(user_id, last_activity=self._now_iso())

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    def is_banned(self, user_id: int, with_deleted: bool | None = None) -> bool:
        """Return the banned flag, or False if the user does not exist."""
        row = self._gateway.find_by_unique_key("id", user_id, *self._live(with_deleted))
        return bool(row.banned) if row is not None else False

    def exists_by_id(self, user_id: int, with_deleted: bool | None = None) -> bool:
        c = self._gateway.c
        return self._gateway.count_where(c.id == user_id, *self._live(with_deleted)) > 0

    def exists_by_email(self, email: str, with_deleted: bool | None = None) -> bool:
        c = self._gateway.c
        return self._gateway.count_where(c.email == self._normalize_email(email), *self._live(with_deleted)) > 0

    def exists_by_username(self, username: str, with_deleted: bool | None = None) -> bool:
        c = self._gateway.c
        return self._gateway.count_where(c.username == username, *self._live(with_deleted)) > 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int, with_deleted: bool | None = None) -> User | None:
        row = self._gateway.find_by_unique_key("id", user_id, *self._live(with_deleted))
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, with_deleted: bool | None = None) -> User | None:
        """Look up a user by email. With deleted rows included, the newest match wins."""
        c = self._gateway.c
        rows = self._gateway.select_where(
            c.email == self._normalize_email(email), *self._live(with_deleted), order_by=c.id.desc()
        )
        return _row_to_user(rows[0]) if rows else None

    def get_by_username(self, username: str, with_deleted: bool | None = None) -> User | None:
        c = self._gateway.c
        rows = self._gateway.select_where(c.username == username, *self._live(with_deleted), order_by=c.id.desc())
        return _row_to_user(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # Password checks
    # ------------------------------------------------------------------

    def verify_password(self, user: User, password: str) -> bool:
        """Constant-time check of password against the user's stored hash.

        Hashes made under an earlier PASSWORD_HASH_ALGO still verify.
        """
        return verify_any(password, user.password_hash, self._hasher)

    def equalize_timing(self, password: str) -> None:
        """Spend one verify's worth of CPU. Call when the user was not found."""
        self._hasher.dummy_verify(password)

    def password_needs_rehash(self, user: User) -> bool:
        """True when the stored hash predates the current algorithm or parameters."""
        return self._hasher.needs_rehash(user.password_hash)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        banned=bool(row.banned),
        deleted=bool(row.deleted),
        last_login=row.last_login,
        last_activity=row.last_activity,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
