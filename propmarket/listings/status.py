"""Listing moderation status machine.

States are ``pending``, ``approved`` and ``rejected``.  There is no terminal
state: every status may move to every other one, because moderation is
reversible.

A transition runs in this order:

1. Load the listing (outside any transaction); unknown id →
   :class:`~propmarket.core.exceptions.NotFoundError`.
2. Validate the requested status; anything but one of the three strings →
   :class:`~propmarket.core.exceptions.InvalidRequestError`.
3. Inside one database transaction:

   a. if the status changes, append a ``status_changes`` row whose
      ``previous_status`` is the value read in step 1
      (:class:`~propmarket.core.exceptions.AuditWriteError` on failure);
   b. update the listing row (status plus any other supplied columns, in one
      statement);
   c. if the status changed to ``approved`` or ``rejected``, write the owner
      notification (:class:`~propmarket.core.exceptions.NotificationWriteError`
      on failure).

   Any failure rolls back all three writes.
4. Return the updated listing with its media joined.

Requesting the status a listing already has is not rejected: the row is still
updated but nothing is audited and nobody is notified.

Because step 1 reads outside the transaction, two concurrent transitions on
the same listing can both audit the same ``previous_status``; the last commit
wins.  No lock is taken to prevent this.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from propmarket.core import events
from propmarket.core.exceptions import InvalidRequestError, NotFoundError, StoreWriteError
from propmarket.core.models import Listing, PostingStatus, StatusChange
from propmarket.notifiers.notifier import Notifier
from propmarket.storage.database import Database
from propmarket.storage.repository import AuditRepository, ListingRepository

__all__ = ["ListingStatusMachine", "parse_status"]

logger = logging.getLogger(__name__)

_VALID_STATUSES: frozenset[str] = frozenset(s.value for s in PostingStatus)


def parse_status(value: Any, field: str = "newStatus") -> PostingStatus:
    """Validate a client-supplied status value (exact, lowercase).

    Raises:
        InvalidRequestError: If *value* is missing, not a string, or not one
            of ``pending``, ``approved``, ``rejected``.
    """
    if value is None:
        raise InvalidRequestError(
            "Status is required", details=[{"field": field, "issue": "missing"}]
        )
    if not isinstance(value, str):
        raise InvalidRequestError(
            "Status must be a string",
            details=[{"field": field, "issue": f"expected string, got {type(value).__name__}"}],
        )
    if value not in _VALID_STATUSES:
        raise InvalidRequestError(
            f"Invalid status {value!r}",
            details=[{"field": field, "issue": f"must be one of {sorted(_VALID_STATUSES)}"}],
        )
    return PostingStatus(value)


class ListingStatusMachine:
    """Applies audited, notified status transitions to listings.

    Args:
        db: Database whose transaction wraps the audit, update and
            notification writes.
        listings: Listing data-access object.
        audit: Status-change audit data-access object.
        notifier: Writes the owner notification.
    """

    def __init__(
        self,
        db: Database,
        listings: ListingRepository,
        audit: AuditRepository,
        notifier: Notifier,
    ) -> None:
        self._db = db
        self._listings = listings
        self._audit = audit
        self._notifier = notifier

    async def transition(
        self,
        listing_id: str,
        new_status: Any,
        *,
        note: str | None = None,
        actor_id: str | None = None,
        notification_link: str | None = None,
    ) -> Listing:
        """Move *listing_id* to *new_status* (the status-only entry point).

        Raises:
            NotFoundError: Unknown listing id.
            InvalidRequestError: Missing or invalid status.
            AuditWriteError: The audit row could not be written.
            NotificationWriteError: The owner notification could not be
                written; the whole change was rolled back.
            StoreWriteError: The listing row could not be updated.
        """
        current = await self._listings.get(listing_id)
        if current is None:
            raise NotFoundError("listing", listing_id)
        status = parse_status(new_status)
        return await self.apply(
            current,
            status,
            note=note,
            actor_id=actor_id,
            notification_link=notification_link,
        )

    async def apply(
        self,
        current: Listing,
        status: PostingStatus,
        *,
        fields: Mapping[str, Any] | None = None,
        note: str | None = None,
        actor_id: str | None = None,
        notification_link: str | None = None,
    ) -> Listing:
        """Apply *status* (and optional other columns) to an already-loaded listing.

        Args:
            current: The listing as read before the change; its
                ``posting_status`` becomes the audited ``previous_status``.
            status: Validated target status.
            fields: Other serialised column values updated in the same
                statement (generic update path).
            note: Moderator note stored on the audit row.
            actor_id: Who made the change.
            notification_link: Deep link overriding the per-status default.

        Returns:
            The listing as stored after the change, media joined.
        """
        previous = current.posting_status
        changed = status != previous
        columns: dict[str, Any] = dict(fields or {})
        columns["posting_status"] = status.value

        try:
            async with self._db.transaction():
                if changed:
                    await self._audit.record(
                        StatusChange(
                            listing_id=current.id,
                            changed_by=actor_id,
                            previous_status=previous,
                            new_status=status,
                            note=note,
                        )
                    )
                if not await self._listings.update_fields(current.id, columns):
                    raise NotFoundError("listing", current.id)
                if changed:
                    named = current.model_copy(update={"name": columns.get("name", current.name)})
                    await self._notifier.notify_status_change(named, status, notification_link)
        except StoreWriteError:
            logger.error(
                "Status change of listing %s (%s → %s) rolled back.",
                current.id,
                previous,
                status,
                exc_info=True,
                extra={"event": events.STATUS_CHANGE_ABORTED},
            )
            raise

        if changed:
            logger.info(
                "Listing %s status %s → %s (by %s)",
                current.id,
                previous,
                status,
                actor_id or "system",
                extra={"event": events.STATUS_CHANGED},
            )
        else:
            logger.info(
                "Listing %s already %s; nothing audited.",
                current.id,
                status,
                extra={"event": events.STATUS_UNCHANGED},
            )

        updated = await self._listings.get(current.id)
        if updated is None:
            raise NotFoundError("listing", current.id)
        return updated
