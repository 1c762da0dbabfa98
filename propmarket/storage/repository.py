"""Data-access objects for the Propmarket relational store.

One repository per table family, all sharing a single
:class:`~propmarket.storage.database.Database`:

* :class:`ListingRepository` — ``listings`` rows with their media joined.
* :class:`MediaRepository` — ``listing_media`` claims and the reference index.
* :class:`AuditRepository` — append-only ``status_changes``.
* :class:`NotificationRepository` — owner ``notifications``.
* :class:`SweepRepository` — the ``storage_sweeps`` queue.
* :class:`UserRepository` — the ``users`` rows read by the legacy scan.

Repositories never open transactions themselves.  A caller that needs several
writes to land atomically wraps them in ``async with db.transaction():`` and
every statement issued inside joins it.

Driver errors (:class:`aiosqlite.Error`) are wrapped into
:class:`~propmarket.core.exceptions.StoreError` (reads) or a
:class:`~propmarket.core.exceptions.StoreWriteError` subclass (writes).

Typical usage::

    from propmarket.storage.database import open_db
    from propmarket.storage.repository import ListingRepository

    async def run() -> None:
        db = await open_db()
        listings = ListingRepository(db)
        listing = await listings.get("P1")
        await db.close()
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from propmarket.core.converters import (
    LISTING_COLUMNS,
    listing_from_row,
    listing_to_row,
    notification_from_row,
    notification_to_row,
    status_change_from_row,
    status_change_to_row,
    user_from_row,
)
from propmarket.core.exceptions import (
    AuditWriteError,
    ListingAlreadyExistsError,
    NotificationWriteError,
    StoreError,
    StoreWriteError,
)
from propmarket.core.keys import DEFAULT_LISTING_ROOT, media_key
from propmarket.core.models import (
    Listing,
    Notification,
    PostingStatus,
    StatusChange,
    User,
)
from propmarket.storage.database import Database

__all__ = [
    "ListingRepository",
    "MediaRepository",
    "AuditRepository",
    "NotificationRepository",
    "SweepRepository",
    "UserRepository",
]

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS: frozenset[str] = frozenset(LISTING_COLUMNS) - {"id"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class ListingRepository:
    """Data-access object for the ``listings`` table.

    Reads return :class:`~propmarket.core.models.Listing` models with their
    ``media`` list materialised from ``listing_media`` in insertion order.

    Args:
        db: Open :class:`~propmarket.storage.database.Database`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def exists(self, listing_id: str) -> bool:
        """Return ``True`` if a listing with *listing_id* is stored."""
        try:
            row = await self._db.fetchone(
                "SELECT 1 FROM listings WHERE id = ? LIMIT 1", (listing_id,)
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to look up listing {listing_id!r}: {exc}") from exc
        return row is not None

    async def get(self, listing_id: str) -> Listing | None:
        """Fetch one listing with its media, or ``None`` if it does not exist."""
        try:
            row = await self._db.fetchone("SELECT * FROM listings WHERE id = ?", (listing_id,))
            if row is None:
                return None
            media_rows = await self._db.fetchall(
                "SELECT filename FROM listing_media WHERE listing_id = ? ORDER BY rowid",
                (listing_id,),
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read listing {listing_id!r}: {exc}") from exc
        return listing_from_row(row, (r["filename"] for r in media_rows))

    async def find(
        self,
        owner_id: str | None = None,
        status: PostingStatus | str | None = None,
    ) -> list[Listing]:
        """Return listings filtered by exact owner and/or status, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if status is not None:
            clauses.append("posting_status = ?")
            params.append(str(status))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            rows = await self._db.fetchall(
                f"SELECT * FROM listings {where} ORDER BY posted_at DESC, id", params
            )
            ids = [row["id"] for row in rows]
            media: dict[str, list[str]] = {listing_id: [] for listing_id in ids}
            if ids:
                media_rows = await self._db.fetchall(
                    "SELECT listing_id, filename FROM listing_media "
                    f"WHERE listing_id IN ({_placeholders(len(ids))}) ORDER BY rowid",
                    ids,
                )
                for media_row in media_rows:
                    media[media_row["listing_id"]].append(media_row["filename"])
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to list listings: {exc}") from exc

        return [listing_from_row(row, media[row["id"]]) for row in rows]

    async def raw_rows(self) -> list[dict[str, Any]]:
        """Return every ``listings`` row as a plain dict (legacy reference scan)."""
        try:
            rows = await self._db.fetchall("SELECT * FROM listings")
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to scan listings: {exc}") from exc
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Write helpers
    # ------------------------------------------------------------------

    async def insert(self, listing: Listing) -> None:
        """Insert *listing* (without its media).

        Raises:
            ListingAlreadyExistsError: If the id is already taken.
            StoreWriteError: On any other database failure.
        """
        row = listing_to_row(listing)
        columns = ", ".join(row)
        try:
            await self._db.execute(
                f"INSERT INTO listings ({columns}) VALUES ({_placeholders(len(row))})",
                tuple(row.values()),
            )
        except sqlite3.IntegrityError as exc:
            if await self.exists(listing.id):
                raise ListingAlreadyExistsError(listing.id) from exc
            raise StoreWriteError(f"Failed to insert listing {listing.id!r}: {exc}") from exc
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to insert listing {listing.id!r}: {exc}") from exc

        logger.debug(
            "Inserted listing %s (owner=%s status=%s)",
            listing.id,
            listing.owner_id,
            listing.posting_status,
        )

    async def update_fields(self, listing_id: str, fields: Mapping[str, Any]) -> bool:
        """Update the given columns of one listing in a single statement.

        Args:
            listing_id: Listing to update.
            fields: Column name → already-serialised value.  ``id`` and
                ``media`` are not columns that can be updated here.

        Returns:
            ``True`` if a row was updated, ``False`` if the id is unknown.

        Raises:
            ValueError: If *fields* names a column that cannot be updated.
            StoreWriteError: On database failure.
        """
        if not fields:
            return await self.exists(listing_id)
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not updatable listing columns: {sorted(unknown)}")

        assignments = ", ".join(f"{column} = ?" for column in fields)
        try:
            cursor = await self._db.execute(
                f"UPDATE listings SET {assignments} WHERE id = ?",
                (*fields.values(), listing_id),
            )
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to update listing {listing_id!r}: {exc}") from exc
        return cursor.rowcount > 0

    async def delete(self, listing_id: str) -> bool:
        """Delete a listing row; its ``listing_media`` rows cascade.

        Returns:
            ``True`` if a row was deleted.
        """
        try:
            cursor = await self._db.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to delete listing {listing_id!r}: {exc}") from exc
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Media claims
# ---------------------------------------------------------------------------


class MediaRepository:
    """Data-access object for ``listing_media``.

    Args:
        db: Open database.
        listing_root: Key prefix used to derive ``storage_key``.
    """

    def __init__(self, db: Database, listing_root: str = DEFAULT_LISTING_ROOT) -> None:
        self._db = db
        self._listing_root = listing_root

    async def filenames_for(self, listing_id: str) -> list[str]:
        """Return the filenames claimed by *listing_id* in insertion order."""
        try:
            rows = await self._db.fetchall(
                "SELECT filename FROM listing_media WHERE listing_id = ? ORDER BY rowid",
                (listing_id,),
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read media of {listing_id!r}: {exc}") from exc
        return [row["filename"] for row in rows]

    async def add(self, listing_id: str, filenames: Iterable[str]) -> list[str]:
        """Claim *filenames* for *listing_id*; already-claimed names are skipped.

        Returns:
            The filenames that were newly inserted, in input order.
        """
        inserted: list[str] = []
        now = _now_iso()
        try:
            for filename in dict.fromkeys(filenames):
                cursor = await self._db.execute(
                    "INSERT OR IGNORE INTO listing_media "
                    "(listing_id, filename, storage_key, created_at) VALUES (?, ?, ?, ?)",
                    (
                        listing_id,
                        filename,
                        media_key(listing_id, filename, self._listing_root),
                        now,
                    ),
                )
                if cursor.rowcount > 0:
                    inserted.append(filename)
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to attach media to {listing_id!r}: {exc}") from exc
        return inserted

    async def reference_index(self) -> dict[str, set[str]]:
        """Read the whole table into ``{listing_id: {filename, ...}}``."""
        try:
            rows = await self._db.fetchall("SELECT listing_id, filename FROM listing_media")
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to build media reference index: {exc}") from exc
        index: dict[str, set[str]] = {}
        for row in rows:
            index.setdefault(row["listing_id"], set()).add(row["filename"])
        return index


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditRepository:
    """Append-only access to ``status_changes``."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def record(self, change: StatusChange) -> StatusChange:
        """Insert *change* and return it with its row id.

        Raises:
            AuditWriteError: If the row cannot be written.
        """
        row = status_change_to_row(change)
        try:
            cursor = await self._db.execute(
                f"INSERT INTO status_changes ({', '.join(row)}) "
                f"VALUES ({_placeholders(len(row))})",
                tuple(row.values()),
            )
        except aiosqlite.Error as exc:
            raise AuditWriteError(
                f"Failed to write status change for {change.listing_id!r}: {exc}"
            ) from exc
        return change.model_copy(update={"id": cursor.lastrowid})

    async def for_listing(self, listing_id: str) -> list[StatusChange]:
        """Return the audit history of *listing_id*, oldest first."""
        try:
            rows = await self._db.fetchall(
                "SELECT * FROM status_changes WHERE listing_id = ? ORDER BY id",
                (listing_id,),
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read audit of {listing_id!r}: {exc}") from exc
        return [status_change_from_row(row) for row in rows]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationRepository:
    """Data-access object for ``notifications``."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def insert(self, notification: Notification) -> Notification:
        """Insert *notification* and return it with its row id.

        Raises:
            NotificationWriteError: If the row cannot be written.
        """
        row = notification_to_row(notification)
        try:
            cursor = await self._db.execute(
                f"INSERT INTO notifications ({', '.join(row)}) "
                f"VALUES ({_placeholders(len(row))})",
                tuple(row.values()),
            )
        except aiosqlite.Error as exc:
            raise NotificationWriteError(
                f"Failed to write notification for user {notification.user_id!r}: {exc}"
            ) from exc
        return notification.model_copy(update={"id": cursor.lastrowid})

    async def for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """Return a user's notifications, newest first."""
        sql = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        try:
            rows = await self._db.fetchall(f"{sql} ORDER BY id DESC", (user_id,))
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read notifications of {user_id!r}: {exc}") from exc
        return [notification_from_row(row) for row in rows]

    async def mark_read(self, notification_id: int) -> bool:
        """Mark one notification read; ``False`` if the id is unknown."""
        try:
            cursor = await self._db.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ?", (notification_id,)
            )
        except aiosqlite.Error as exc:
            raise StoreWriteError(
                f"Failed to mark notification {notification_id} read: {exc}"
            ) from exc
        return cursor.rowcount > 0

    async def unread_count(self, user_id: str) -> int:
        try:
            row = await self._db.fetchone(
                "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0",
                (user_id,),
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to count notifications of {user_id!r}: {exc}") from exc
        return int(row[0]) if row else 0


# ---------------------------------------------------------------------------
# Storage sweep queue
# ---------------------------------------------------------------------------


class SweepRepository:
    """The queue of listing prefixes awaiting a storage sweep."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def enqueue(self, listing_id: str) -> None:
        """Queue *listing_id*; queuing an already-queued id is a no-op."""
        try:
            await self._db.execute(
                "INSERT OR IGNORE INTO storage_sweeps (listing_id, requested_at) VALUES (?, ?)",
                (listing_id, _now_iso()),
            )
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to queue sweep of {listing_id!r}: {exc}") from exc

    async def queued_ids(self) -> list[str]:
        try:
            rows = await self._db.fetchall(
                "SELECT listing_id FROM storage_sweeps ORDER BY requested_at, listing_id"
            )
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read sweep queue: {exc}") from exc
        return [row["listing_id"] for row in rows]

    async def dequeue(self, listing_id: str) -> bool:
        try:
            cursor = await self._db.execute(
                "DELETE FROM storage_sweeps WHERE listing_id = ?", (listing_id,)
            )
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to dequeue sweep of {listing_id!r}: {exc}") from exc
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserRepository:
    """Minimal access to ``users`` (account management lives elsewhere)."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(self, user: User) -> None:
        try:
            await self._db.execute(
                "INSERT INTO users (id, username, email, profile_image) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET username = excluded.username, "
                "email = excluded.email, profile_image = excluded.profile_image",
                (user.id, user.username, user.email, user.profile_image),
            )
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to save user {user.id!r}: {exc}") from exc

    async def get(self, user_id: str) -> User | None:
        try:
            row = await self._db.fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to read user {user_id!r}: {exc}") from exc
        return user_from_row(row) if row is not None else None

    async def raw_rows(self) -> list[dict[str, Any]]:
        """Return every ``users`` row as a plain dict (legacy reference scan)."""
        try:
            rows = await self._db.fetchall("SELECT * FROM users")
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to scan users: {exc}") from exc
        return [dict(row) for row in rows]
