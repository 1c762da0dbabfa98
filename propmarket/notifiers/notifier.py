"""Owner notification entry point.

Provides :class:`Notifier`, the single object the status machine calls to
tell a listing owner about a moderation decision.  It owns the decision of
*whether* a status produces a notification and delegates to:

* :func:`~propmarket.notifiers.formatter.format_status_message` — wording.
* :class:`~propmarket.storage.repository.NotificationRepository` — the row.

The notifier does not swallow write failures: a
:class:`~propmarket.core.exceptions.NotificationWriteError` propagates so the
enclosing status-change transaction rolls back.

It also exposes the read side of the owner inbox (list, mark read, unread
count) so callers never touch the repository directly.

Typical usage::

    notifier = Notifier(NotificationRepository(db))
    async with db.transaction():
        ...
        await notifier.notify_status_change(listing, PostingStatus.APPROVED)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from propmarket.core import events
from propmarket.core.models import Listing, Notification, PostingStatus
from propmarket.notifiers.formatter import (
    DEFAULT_STATUS_LINKS,
    format_status_message,
    resolve_status_link,
)
from propmarket.storage.repository import NotificationRepository

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)


class Notifier:
    """Formats and persists owner notifications.

    Args:
        repo: Notification data-access object.
        links: Per-status default deep links.  Defaults to
            :data:`~propmarket.notifiers.formatter.DEFAULT_STATUS_LINKS`.
    """

    def __init__(
        self,
        repo: NotificationRepository,
        links: Mapping[PostingStatus, str] | None = None,
    ) -> None:
        self._repo = repo
        self._links = dict(links) if links is not None else dict(DEFAULT_STATUS_LINKS)

    async def notify_status_change(
        self,
        listing: Listing,
        status: PostingStatus,
        link: str | None = None,
    ) -> Notification | None:
        """Write the owner notification for *listing* landing on *status*.

        Args:
            listing: The listing whose status changed (owner and name are
                read from it).
            status: The new status.
            link: Optional deep link overriding the per-status default.

        Returns:
            The stored notification, or ``None`` when *status* does not
            notify the owner (``pending``).

        Raises:
            NotificationWriteError: If the row cannot be written.
        """
        if not status.notifies_owner:
            return None

        notification = Notification(
            user_id=listing.owner_id,
            text=format_status_message(listing.name, status),
            link=resolve_status_link(status, link, self._links),
        )
        stored = await self._repo.insert(notification)
        logger.info(
            "Notified owner %s: listing %s %s",
            listing.owner_id,
            listing.id,
            status,
            extra={"event": events.NOTIFICATION_CREATED},
        )
        return stored

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def inbox(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return await self._repo.for_user(user_id, unread_only=unread_only)

    async def mark_read(self, notification_id: int) -> bool:
        return await self._repo.mark_read(notification_id)

    async def unread_count(self, user_id: str) -> int:
        return await self._repo.unread_count(user_id)
