"""
auth/storage.py -- Thin SQLAlchemy Core gateway shared by the auth stores.

Both stores used to open connections, translate IntegrityError and filter
soft-deleted rows by hand. TableGateway collects that plumbing behind the
capability set the stores actually need:

  find_by_unique_key  -- equality lookup on an indexed column
  insert_unique       -- INSERT, unique-index violations become ConflictError
  update_by_id        -- UPDATE one row by primary key (plus extra guards)
  delete_where        -- DELETE with arbitrary bound conditions
  select_where / count_where -- read helpers for listings and existence checks

Uniqueness is the database's job. The gateway never does check-then-insert;
it relies on unique indexes and maps the resulting IntegrityError to
ConflictError so concurrent writers get a typed, retryable failure.

Security: all queries use bound parameters. No f-strings in SQL.

Each call opens and closes its own connection (one short round trip), so no
connection is held while a caller computes a password hash.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import MetaData, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from auth.exceptions import ConflictError

logger = logging.getLogger("loginkeep.storage")

# Shared by auth/store.py and auth/tokens.py so one create_all() builds both.
metadata = MetaData()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine with the SQLite tweaks both stores rely on.

    A plain sqlite:///:memory: URL gets a StaticPool so every connection (and
    every thread) sees the same in-memory database. Without it each pooled
    connection would present a blank schema.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)
    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TableGateway:
    """Row access for a single table.

    deleted_column names an integer 0/1 soft-delete flag. When set,
    live_only() returns the clause that hides deleted rows; the gateway itself
    never applies it implicitly -- stores decide per call.
    """

    def __init__(self, engine: Engine, table: Table, deleted_column: str | None = None) -> None:
        self.engine = engine
        self.table = table
        self._deleted = table.c[deleted_column] if deleted_column else None

    @property
    def c(self):
        return self.table.c

    def live_only(self, with_deleted: bool = False) -> list:
        """Return [] or [deleted == 0] depending on with_deleted."""
        if self._deleted is None or with_deleted:
            return []
        return [self._deleted == 0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_unique_key(self, column: str, value: Any, *conditions) -> Row | None:
        """Return the single row where column == value (and conditions), or None."""
        stmt = select(self.table).where(self.table.c[column] == value, *conditions)
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone()

    def select_where(self, *conditions, columns=None, order_by=None) -> list[Row]:
        stmt = select(*(columns if columns is not None else [self.table])).where(*conditions)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).fetchall())

    def count_where(self, *conditions) -> int:
        stmt = select(func.count()).select_from(self.table).where(*conditions)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_unique(self, **values) -> int:
        """Insert a row and return its primary key.

        Raises ConflictError if a unique index rejects the row.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(self.table.insert().values(**values))
                conn.commit()
                new_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            logger.debug("Insert into %s rejected by a unique index: %s", self.table.name, exc.orig)
            raise ConflictError() from exc
        return new_id

    def update_by_id(self, row_id: int, *conditions, **values) -> int:
        """Update the row with primary key row_id. Returns the matched row count (0 or 1).

        Extra conditions narrow the match (e.g. deleted == 0, user_id == owner).
        Raises ConflictError if the new values collide with a unique index.
        """
        stmt = self.table.update().where(self.table.c.id == row_id, *conditions).values(**values)
        try:
            with self.engine.connect() as conn:
                matched = conn.execute(stmt).rowcount
                conn.commit()
        except IntegrityError as exc:
            logger.debug("Update of %s id=%s rejected by a unique index: %s", self.table.name, row_id, exc.orig)
            raise ConflictError() from exc
        return matched

    def delete_where(self, *conditions) -> int:
        """Delete every row matching all conditions. Returns the number removed."""
        if not conditions:
            raise ValueError("delete_where() requires at least one condition")
        with self.engine.connect() as conn:
            removed = conn.execute(self.table.delete().where(*conditions)).rowcount
            conn.commit()
        return removed
