"""SQLite database initialisation and transaction handling for Propmarket.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS`` — safe to
  call on every startup because the statements are idempotent.
* Wrapping the connection in :class:`Database`, which serialises statements
  and explicit transactions on the single shared connection.

Why a wrapper
-------------
The connection runs in autocommit mode (``isolation_level=None``); a
multi-statement unit of work opens an explicit ``BEGIN IMMEDIATE`` through
:meth:`Database.transaction`.  Because every coroutine shares one connection,
a statement issued by coroutine B while coroutine A has a transaction open
would silently become part of A's transaction.  :class:`Database` holds an
:class:`asyncio.Lock` for the duration of each standalone statement and each
transaction, so units of work never interleave on the connection.  The lock
is **not** held between a read and a later transaction: read-then-write
sequences are still racy across coroutines, exactly as they would be across
processes.

Typical usage::

    from propmarket.storage.database import open_db

    async def main() -> None:
        db = await open_db()            # creates file + schema if absent
        async with db.transaction():
            await db.execute("UPDATE listings SET name = ? WHERE id = ?", ("x", "P1"))
        await db.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "Database",
    "open_db",
    "open_memory_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("propmarket.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``listings``: one row per listing.  Column names equal the
#: :class:`~propmarket.core.models.Listing` field names (minus ``media``).
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    id             TEXT    NOT NULL PRIMARY KEY,
    name           TEXT    NOT NULL,
    owner_id       TEXT    NOT NULL,
    price          REAL    NOT NULL,
    property_type  TEXT,
    listing_type   TEXT,
    period_value   INTEGER,
    period_unit    TEXT,
    land_area      REAL,
    building_area  REAL,
    bedrooms       INTEGER,
    bathrooms      INTEGER,
    description    TEXT    NOT NULL DEFAULT '',
    address        TEXT,
    latitude       REAL,
    longitude      REAL,
    posting_status TEXT    NOT NULL DEFAULT 'pending'
                   CHECK (posting_status IN ('pending', 'approved', 'rejected')),
    posted_at      TEXT    NOT NULL
)"""

#: ``listing_media``: the claims the reconciler trusts.  The composite
#: primary key makes attaching the same filename twice a no-op; rows go away
#: with their listing.
_DDL_LISTING_MEDIA = """\
CREATE TABLE IF NOT EXISTS listing_media (
    listing_id  TEXT NOT NULL REFERENCES listings(id) ON DELETE CASCADE,
    filename    TEXT NOT NULL,
    storage_key TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (listing_id, filename)
)"""

#: ``status_changes``: append-only audit.  No foreign key: audit history
#: outlives the listing it describes.
_DDL_STATUS_CHANGES = """\
CREATE TABLE IF NOT EXISTS status_changes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    listing_id      TEXT NOT NULL,
    changed_by      TEXT,
    previous_status TEXT NOT NULL,
    new_status      TEXT NOT NULL,
    note            TEXT,
    changed_at      TEXT NOT NULL
)"""

_DDL_NOTIFICATIONS = """\
CREATE TABLE IF NOT EXISTS notifications (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT    NOT NULL,
    text       TEXT    NOT NULL,
    is_read    INTEGER NOT NULL DEFAULT 0,
    link       TEXT,
    created_at TEXT    NOT NULL
)"""

_DDL_USERS = """\
CREATE TABLE IF NOT EXISTS users (
    id            TEXT NOT NULL PRIMARY KEY,
    username      TEXT NOT NULL DEFAULT '',
    email         TEXT,
    profile_image TEXT
)"""

#: ``storage_sweeps``: listing prefixes waiting to be emptied by the
#: reconciler after their listing was deleted.
_DDL_STORAGE_SWEEPS = """\
CREATE TABLE IF NOT EXISTS storage_sweeps (
    listing_id   TEXT NOT NULL PRIMARY KEY,
    requested_at TEXT NOT NULL
)"""

_DDL_INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS ix_listings_owner ON listings (owner_id)",
    "CREATE INDEX IF NOT EXISTS ix_listings_status ON listings (posting_status)",
    "CREATE INDEX IF NOT EXISTS ix_status_changes_listing ON status_changes (listing_id)",
    "CREATE INDEX IF NOT EXISTS ix_notifications_user ON notifications (user_id)",
)

_DDL_TABLES: tuple[str, ...] = (
    _DDL_LISTINGS,
    _DDL_LISTING_MEDIA,
    _DDL_STATUS_CHANGES,
    _DDL_NOTIFICATIONS,
    _DDL_USERS,
    _DDL_STORAGE_SWEEPS,
)

# ---------------------------------------------------------------------------
# Connection wrapper
# ---------------------------------------------------------------------------

#: The :class:`Database` whose transaction the current task is inside, if any.
_TX_OWNER: ContextVar[Database | None] = ContextVar("propmarket_tx_owner", default=None)


class Database:
    """Serialised access to one autocommit :class:`aiosqlite.Connection`.

    Args:
        conn: An open connection created with ``isolation_level=None``.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> aiosqlite.Connection:
        """The wrapped connection (for schema bootstrap and diagnostics)."""
        return self._conn

    @property
    def in_transaction(self) -> bool:
        """``True`` when the current task is inside :meth:`transaction`."""
        return _TX_OWNER.get() is self

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Run one statement and return its cursor (``rowcount``/``lastrowid``)."""
        return await self._serialised(lambda: self._conn.execute(sql, params))

    async def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> aiosqlite.Cursor:
        """Run one statement for every parameter tuple in *rows*."""
        return await self._serialised(lambda: self._conn.executemany(sql, rows))

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        """Run a query and return its first row, or ``None``."""

        async def _query() -> aiosqlite.Row | None:
            cursor = await self._conn.execute(sql, params)
            try:
                return await cursor.fetchone()
            finally:
                await cursor.close()

        return await self._serialised(_query)

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        """Run a query and return all rows."""
        return await self._serialised(
            lambda: self._conn.execute_fetchall(sql, params)
        )  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Database]:
        """Run the enclosed statements as one atomic unit.

        Commits on normal exit and rolls back on any exception (which is then
        re-raised).  Nested use joins the outer transaction.
        """
        if self.in_transaction:
            yield self
            return

        async with self._lock:
            token = _TX_OWNER.set(self)
            try:
                await self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self
                except BaseException:
                    await self._conn.execute("ROLLBACK")
                    logger.debug("Transaction rolled back.")
                    raise
                await self._conn.execute("COMMIT")
            finally:
                _TX_OWNER.reset(token)

    async def close(self) -> None:
        await self._conn.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _serialised(self, call: Callable[[], Awaitable[T]]) -> T:
        if self.in_transaction:
            return await call()
        async with self._lock:
            return await call()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> Database:
    """Open (or create) the SQLite database and configure it for production.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection in autocommit mode.
    3. Set ``row_factory = aiosqlite.Row`` so columns can be accessed by name.
    4. Enable WAL journal mode and foreign-key enforcement.
    5. Call :func:`create_schema` to bootstrap tables (idempotent).

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.  ``":memory:"`` opens a private
            in-memory database.

    Returns:
        A :class:`Database` wrapping the open connection.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened or
            created (e.g. permission denied on the parent directory).
    """
    target = str(path) if path is not None else str(DEFAULT_DB_PATH)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", target)

    conn: aiosqlite.Connection = await aiosqlite.connect(target, isolation_level=None)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s (schema verified)", target)
    return Database(conn)


async def open_memory_db() -> Database:
    """Open a private in-memory database with the schema applied."""
    return await open_db(":memory:")


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all required tables and indexes if they do not already exist.

    Idempotent; existing data is untouched.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    for ddl in _DDL_TABLES:
        await conn.execute(ddl)
    for ddl in _DDL_INDEXES:
        await conn.execute(ddl)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%d tables verified)", len(_DDL_TABLES))


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Apply PRAGMA settings that must be set immediately after opening.

    * ``journal_mode=WAL``: readers in other processes (the web layer) do not
      block the single writer.
    * ``foreign_keys=ON``: required for ``listing_media`` rows to cascade
      away with their listing.
    """
    cursor = await conn.execute("PRAGMA journal_mode=WAL")
    row = await cursor.fetchone()
    await cursor.close()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug(
            "Requested WAL journal mode but SQLite reported %r "
            "(expected for in-memory databases).",
            mode,
        )

    await conn.execute("PRAGMA foreign_keys=ON")
