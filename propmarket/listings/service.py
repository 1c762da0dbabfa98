"""Listing operations called by the (external) web handlers.

:class:`ListingService` composes the repositories, the status machine, the
media attacher and the reconciler into the handful of operations a request
handler needs.  It is the only place that decides which writes share a
transaction:

* **create** — listing row and Media claims in one transaction; staged files
  are moved afterwards (best effort).
* **update** — other columns, status change (audit + notification) and new
  Media claims in one transaction.
* **delete** — listing row (Media rows cascade) and the storage sweep request
  in one transaction; the optional immediate sweep runs afterwards and never
  fails the delete.

Typical usage::

    service = ListingService(db, listings, sweeps, machine, attacher, reconciler)
    listing = await service.create_listing(payload, temp_id="T1")
    listing = await service.change_status(listing.id, "approved", actor_id="admin")
    await service.delete_listing(listing.id)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from propmarket.core import events
from propmarket.core.converters import (
    listing_changes_from_payload,
    listing_from_payload,
    listing_to_row,
)
from propmarket.core.exceptions import NotFoundError, PropmarketError
from propmarket.core.models import Listing
from propmarket.listings.status import ListingStatusMachine, parse_status
from propmarket.media.attacher import MediaAttacher
from propmarket.media.reconciler import ListingReconcileResult, OrphanReconciler
from propmarket.storage.database import Database
from propmarket.storage.repository import ListingRepository, SweepRepository

__all__ = ["ListingService"]

logger = logging.getLogger(__name__)


class ListingService:
    """Create, read, update and delete listings.

    Args:
        db: Shared database (transaction boundary).
        listings: Listing data-access object.
        sweeps: Storage sweep queue.
        machine: Status machine for audited status changes.
        attacher: Media attacher.
        reconciler: Used for the immediate post-delete sweep; ``None``
            leaves deleted prefixes to the next scheduled run.
    """

    def __init__(
        self,
        db: Database,
        listings: ListingRepository,
        sweeps: SweepRepository,
        machine: ListingStatusMachine,
        attacher: MediaAttacher,
        reconciler: OrphanReconciler | None = None,
    ) -> None:
        self._db = db
        self._listings = listings
        self._sweeps = sweeps
        self._machine = machine
        self._attacher = attacher
        self._reconciler = reconciler

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_listing(self, listing_id: str) -> Listing:
        """Return one listing with its media.

        Raises:
            NotFoundError: Unknown id.
        """
        listing = await self._listings.get(listing_id)
        if listing is None:
            raise NotFoundError("listing", listing_id)
        return listing

    async def list_listings(
        self, owner_id: str | None = None, status: str | None = None
    ) -> list[Listing]:
        """Return listings filtered by owner and/or status.

        Raises:
            InvalidRequestError: If *status* is not a valid status.
        """
        parsed = parse_status(status, field="status") if status is not None else None
        return await self._listings.find(owner_id=owner_id, status=parsed)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_listing(
        self, payload: Mapping[str, Any], temp_id: str | None = None
    ) -> Listing:
        """Validate and store a new listing, then attach its media.

        Args:
            payload: Client submission (camelCase, snake_case or legacy
                keys).  ``media`` lists already-uploaded filenames.
            temp_id: Staging folder the media was uploaded to before the
                listing id existed.

        Raises:
            InvalidRequestError: Validation failed.
            ListingAlreadyExistsError: The id is taken.
            StoreWriteError: The row or its Media claims could not be written.
        """
        listing = listing_from_payload(payload)
        async with self._db.transaction():
            await self._listings.insert(listing)
            attached = await self._attacher.claim(listing.id, listing.media)

        moved = await self._attacher.move_staged(listing.id, attached, temp_id)
        logger.info(
            "Created listing %s for owner %s (%d media, %d moved from staging)",
            listing.id,
            listing.owner_id,
            len(attached),
            moved,
            extra={"event": events.LISTING_CREATED},
        )
        return await self.get_listing(listing.id)

    async def update_listing(
        self,
        listing_id: str,
        changes: Mapping[str, Any],
        *,
        actor_id: str | None = None,
        note: str | None = None,
        notification_link: str | None = None,
    ) -> Listing:
        """Apply a partial update (the generic update endpoint).

        ``id`` in *changes* is ignored.  ``media`` is routed to the attacher
        (new names are claimed, missing ones are kept).  A supplied posting
        status goes through the status machine with the same audit and
        notification rules as :meth:`change_status`; the other supplied
        columns are written in the same statement.

        Raises:
            NotFoundError: Unknown id.
            InvalidRequestError: Unknown keys or invalid values.
            StoreWriteError: Any write failed; nothing was applied.
        """
        current = await self.get_listing(listing_id)
        merged, fields = listing_changes_from_payload(current, changes)
        row = listing_to_row(merged)
        columns = {
            name: row[name] for name in fields if name not in ("media", "posting_status")
        }

        async with self._db.transaction():
            if "posting_status" in fields:
                await self._machine.apply(
                    current,
                    merged.posting_status,
                    fields=columns,
                    note=note,
                    actor_id=actor_id,
                    notification_link=notification_link,
                )
            elif columns and not await self._listings.update_fields(listing_id, columns):
                raise NotFoundError("listing", listing_id)
            if "media" in fields:
                await self._attacher.attach_on_update(listing_id, merged.media)

        return await self.get_listing(listing_id)

    async def change_status(
        self,
        listing_id: str,
        new_status: Any,
        *,
        note: str | None = None,
        actor_id: str | None = None,
        notification_link: str | None = None,
    ) -> Listing:
        """The admin status endpoint: change only ``posting_status``.

        See :meth:`ListingStatusMachine.transition` for the error contract.
        """
        return await self._machine.transition(
            listing_id,
            new_status,
            note=note,
            actor_id=actor_id,
            notification_link=notification_link,
        )

    async def delete_listing(
        self, listing_id: str, sweep_now: bool = True
    ) -> ListingReconcileResult | None:
        """Delete a listing and schedule the removal of its storage prefix.

        Args:
            listing_id: Listing to delete.
            sweep_now: Reconcile the listing prefix immediately.  Failures
                are logged; the queued sweep is retried by the next run.

        Returns:
            The immediate sweep result, or ``None`` when no sweep ran.

        Raises:
            NotFoundError: Unknown id.
            StoreWriteError: The row could not be deleted or the sweep not
                queued; nothing was applied.
        """
        async with self._db.transaction():
            if not await self._listings.delete(listing_id):
                raise NotFoundError("listing", listing_id)
            await self._sweeps.enqueue(listing_id)

        logger.info("Deleted listing %s", listing_id, extra={"event": events.LISTING_DELETED})
        logger.info(
            "Queued storage sweep of listing %s",
            listing_id,
            extra={"event": events.SWEEP_ENQUEUED},
        )

        if not sweep_now or self._reconciler is None:
            return None
        try:
            return await self._reconciler.reconcile_listing(listing_id)
        except PropmarketError as exc:
            logger.warning(
                "Immediate sweep of listing %s failed; left queued: %s",
                listing_id,
                exc,
                exc_info=True,
            )
            return None
