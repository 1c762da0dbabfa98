"""Structured log event name constants.

Key transitions emit a log record with an ``event`` field passed via
``extra={"event": events.X}``.  In ``LOG_FORMAT=json`` mode the value surfaces
as a top-level ``"event"`` key; in text mode the message is self-describing.

Usage example::

    import logging
    from propmarket.core import events

    logger = logging.getLogger(__name__)

    logger.info("Reconciliation started", extra={"event": events.RECONCILE_START})
"""

from __future__ import annotations

__all__ = [
    # Reconciliation lifecycle
    "RECONCILE_START",
    "RECONCILE_COMPLETE",
    "RECONCILE_LISTING_ERROR",
    "ORPHANS_FOUND",
    "ORPHAN_CHUNK_DELETED",
    "ORPHAN_CHUNK_ERROR",
    "SWEEP_ENQUEUED",
    "SWEEP_DRAINED",
    # Status workflow
    "STATUS_CHANGED",
    "STATUS_UNCHANGED",
    "STATUS_CHANGE_ABORTED",
    "NOTIFICATION_CREATED",
    # Media
    "MEDIA_ATTACHED",
    "MEDIA_MOVE_ERROR",
    "MEDIA_UPLOADED",
    "MEDIA_UPLOAD_SKIPPED",
    # Listings
    "LISTING_CREATED",
    "LISTING_DELETED",
]

# ---------------------------------------------------------------------------
# Reconciliation lifecycle
# ---------------------------------------------------------------------------

#: Emitted once when a reconciliation run starts.
RECONCILE_START: str = "RECONCILE_START"

#: Emitted once when a reconciliation run finishes and logs its report.
RECONCILE_COMPLETE: str = "RECONCILE_COMPLETE"

#: Listing or deleting under one listing prefix failed; the run moved on.
RECONCILE_LISTING_ERROR: str = "RECONCILE_LISTING_ERROR"

#: Orphans were found under a listing prefix.
ORPHANS_FOUND: str = "ORPHANS_FOUND"

#: One delete chunk was acknowledged by the store.
ORPHAN_CHUNK_DELETED: str = "ORPHAN_CHUNK_DELETED"

#: One delete chunk failed; skipped.
ORPHAN_CHUNK_ERROR: str = "ORPHAN_CHUNK_ERROR"

#: A deleted listing's id was queued for a storage sweep.
SWEEP_ENQUEUED: str = "SWEEP_ENQUEUED"

#: A queued listing prefix was swept clean and dequeued.
SWEEP_DRAINED: str = "SWEEP_DRAINED"

# ---------------------------------------------------------------------------
# Status workflow
# ---------------------------------------------------------------------------

#: A status change was audited and applied.
STATUS_CHANGED: str = "STATUS_CHANGED"

#: Requested status equals the current one; nothing audited.
STATUS_UNCHANGED: str = "STATUS_UNCHANGED"

#: The status-change transaction was rolled back.
STATUS_CHANGE_ABORTED: str = "STATUS_CHANGE_ABORTED"

#: An owner notification row was written.
NOTIFICATION_CREATED: str = "NOTIFICATION_CREATED"

# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

#: Media rows were attached to a listing.
MEDIA_ATTACHED: str = "MEDIA_ATTACHED"

#: Moving a staged upload to its permanent key failed (best effort).
MEDIA_MOVE_ERROR: str = "MEDIA_MOVE_ERROR"

#: A file was uploaded to the bucket.
MEDIA_UPLOADED: str = "MEDIA_UPLOADED"

#: An upload was rejected or failed and skipped.
MEDIA_UPLOAD_SKIPPED: str = "MEDIA_UPLOAD_SKIPPED"

# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

#: A listing row was inserted.
LISTING_CREATED: str = "LISTING_CREATED"

#: A listing row was deleted.
LISTING_DELETED: str = "LISTING_DELETED"
