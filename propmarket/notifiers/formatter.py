"""Owner-facing notification text.

Pure functions: no I/O, no state.  Kept separate from
:mod:`propmarket.notifiers.notifier` so the wording can be unit-tested and
changed without touching the persistence path.

Example output::

    Your property 'Rumah Minimalis Cibubur' has been approved by admin.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from propmarket.core.models import PostingStatus

__all__ = [
    "DEFAULT_STATUS_LINKS",
    "format_status_message",
    "resolve_status_link",
]

logger = logging.getLogger(__name__)

#: Dashboard pages an owner lands on from a status notification.
DEFAULT_STATUS_LINKS: dict[PostingStatus, str] = {
    PostingStatus.APPROVED: "/user/propertiaktif",
    PostingStatus.REJECTED: "/user/propertiditolak",
}


def format_status_message(listing_name: str, status: PostingStatus) -> str:
    """Render the notification text for a listing that moved to *status*.

    Args:
        listing_name: The listing headline, quoted verbatim.
        status: The new posting status.

    Returns:
        A single-sentence message.
    """
    name = listing_name.strip() or "(untitled)"
    return f"Your property '{name}' has been {status.value} by admin."


def resolve_status_link(
    status: PostingStatus,
    explicit: str | None = None,
    links: Mapping[PostingStatus, str] | None = None,
) -> str | None:
    """Pick the deep link for a status notification.

    A non-blank *explicit* link wins; otherwise the per-status default from
    *links* (or :data:`DEFAULT_STATUS_LINKS`) is used.
    """
    if explicit is not None and explicit.strip():
        return explicit.strip()
    return (links if links is not None else DEFAULT_STATUS_LINKS).get(status)
