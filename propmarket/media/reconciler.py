"""Orphan reconciliation between the blob store and ``listing_media``.

The reconciler deletes bucket objects under the listing root that no Media
row claims.  It never deletes a claimed object and takes no lock over the
bucket, so it can run at any time next to normal traffic.

One run:

1. Read the whole ``listing_media`` table into the **reference index**
   (``listing_id → {filename}``).
2. Build the candidate listing ids: the index keys, the first-level folder
   names under the listing root (objects whose Media rows were never written)
   and the ids queued in ``storage_sweeps`` by listing deletes.  Candidates
   are processed in sorted order.
3. For each candidate, page through ``<root>/<id>/``.  Entries with a size are
   files; entries without one are sub-folders and are left alone.  Paging
   stops on a short page or after ``max_pages`` pages.
4. ``orphans = files − index[id]``; an id with no index entry has every file
   orphaned.
5. Delete orphans in chunks.  A failed chunk is logged and skipped.
6. Report the total the store acknowledged deleting.

Every blob store call is bounded by ``call_timeout_s``.  A list failure or
timeout for one id is logged and the run moves on to the next id.  Re-running
is always safe: the orphan set is recomputed from scratch.

A file uploaded by an in-flight create whose Media row is not written yet
looks orphaned and may be deleted.  That window is inherent to
upload-then-record and is not closed here.

Typical usage::

    reconciler = OrphanReconciler(store, MediaRepository(db), SweepRepository(db))
    report = await reconciler.run()
    print(report.to_payload())          # {"deletedCount": 1, ...}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from propmarket.blobstore.base import BlobEntry, BlobStore
from propmarket.core import events
from propmarket.core.exceptions import BlobStoreError, StoreError
from propmarket.core.keys import DEFAULT_LISTING_ROOT, listing_prefix, media_key
from propmarket.core.run_context import RunContext
from propmarket.storage.repository import MediaRepository, SweepRepository

__all__ = [
    "ListingReconcileResult",
    "ReconcileReport",
    "OrphanReconciler",
    "list_prefix",
    "chunked",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Report data classes
# ---------------------------------------------------------------------------


@dataclass
class ListingReconcileResult:
    """Outcome of reconciling one listing prefix.

    Attributes:
        listing_id: The listing whose prefix was scanned.
        files_found: Objects found under the prefix.
        orphans: Filenames no Media row claims (sorted).
        deleted: Objects the store acknowledged deleting.
        failed_chunks: Delete chunks that raised or timed out.
        error: Set when listing the prefix failed; nothing was deleted.
    """

    listing_id: str
    files_found: int = 0
    orphans: list[str] = field(default_factory=list)
    deleted: int = 0
    failed_chunks: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        """``True`` when the scan and every delete chunk succeeded."""
        return self.error is None and self.failed_chunks == 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "listingId": self.listing_id,
            "filesFound": self.files_found,
            "orphans": list(self.orphans),
            "deleted": self.deleted,
            "failedChunks": self.failed_chunks,
            "error": self.error,
        }


@dataclass
class ReconcileReport:
    """Aggregated outcome of one reconciliation run.

    Attributes:
        dry_run: ``True`` when orphans were reported instead of deleted.
        listings: One result per candidate listing id, in processing order.
        swept: Queued listing ids that were swept clean and dequeued.
    """

    dry_run: bool = False
    listings: list[ListingReconcileResult] = field(default_factory=list)
    swept: list[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        """Total objects the store acknowledged deleting."""
        return sum(r.deleted for r in self.listings)

    @property
    def orphan_count(self) -> int:
        return sum(len(r.orphans) for r in self.listings)

    @property
    def failed_listings(self) -> list[str]:
        """Listing ids whose scan or deletes did not fully succeed."""
        return [r.listing_id for r in self.listings if not r.ok]

    def to_payload(self) -> dict[str, Any]:
        """JSON shape returned by the cleanup entry point."""
        return {
            "deletedCount": self.deleted_count,
            "dryRun": self.dry_run,
            "scannedListings": len(self.listings),
            "orphanCount": self.orphan_count,
            "failedListings": self.failed_listings,
            "sweptListings": list(self.swept),
            "listings": [r.to_payload() for r in self.listings if r.orphans or not r.ok],
        }

    def format_summary(self) -> str:
        """Return a one-line summary suitable for a single ``logger.info()``.

        Example output::

            reconcile (live) — scanned=12 orphans=3 deleted=3 failed=0 swept=1
        """
        mode = "dry-run" if self.dry_run else "live"
        return (
            f"reconcile ({mode}) — scanned={len(self.listings)} "
            f"orphans={self.orphan_count} deleted={self.deleted_count} "
            f"failed={len(self.failed_listings)} swept={len(self.swept)}"
        )


# ---------------------------------------------------------------------------
# Shared blob store helpers
# ---------------------------------------------------------------------------


def chunked(items: Sequence[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of *items* of at most *size* elements."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


async def list_prefix(
    store: BlobStore,
    prefix: str,
    *,
    page_size: int,
    max_pages: int,
    call_timeout_s: float,
) -> list[BlobEntry]:
    """Page through every entry directly under *prefix*.

    Continues while pages come back full, for at most *max_pages* pages.

    Raises:
        BlobStoreError: If a list call fails.
        TimeoutError: If a list call exceeds *call_timeout_s*.
    """
    entries: list[BlobEntry] = []
    for page_no in range(max_pages):
        async with asyncio.timeout(call_timeout_s):
            page = await store.list(prefix, limit=page_size, offset=page_no * page_size)
        entries.extend(page)
        if len(page) < page_size:
            break
    else:
        logger.warning(
            "Stopped listing %r after %d full pages; remaining entries skipped this run.",
            prefix,
            max_pages,
        )
    return entries


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class OrphanReconciler:
    """Deletes unclaimed objects under the listing root, one listing at a time.

    Args:
        store: Blob store to scan and delete from.
        media: Source of the reference index.
        sweeps: Queue of deleted listings awaiting a sweep.
        listing_root: Key prefix of listing folders.
        page_size: Entries requested per list call.
        max_pages: Cap on list calls per prefix.
        delete_batch_size: Keys per delete call.
        call_timeout_s: Timeout applied to each blob store call.
    """

    def __init__(
        self,
        store: BlobStore,
        media: MediaRepository,
        sweeps: SweepRepository,
        *,
        listing_root: str = DEFAULT_LISTING_ROOT,
        page_size: int = 100,
        max_pages: int = 1000,
        delete_batch_size: int = 100,
        call_timeout_s: float = 30.0,
    ) -> None:
        if page_size < 1 or max_pages < 1 or delete_batch_size < 1:
            raise ValueError("page_size, max_pages and delete_batch_size must be ≥ 1")
        self._store = store
        self._media = media
        self._sweeps = sweeps
        self._listing_root = listing_root
        self._page_size = page_size
        self._max_pages = max_pages
        self._delete_batch_size = delete_batch_size
        self._call_timeout_s = call_timeout_s

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, ctx: RunContext | None = None) -> ReconcileReport:
        """Reconcile every candidate listing prefix.

        Args:
            ctx: Run mode; ``RunContext(dry_run=True)`` reports orphans
                without deleting or draining the sweep queue.

        Returns:
            The run report.

        Raises:
            StoreError: If the reference index or the sweep queue cannot be
                read.  Nothing is deleted without an index.
        """
        ctx = ctx or RunContext()
        logger.info(
            "Reconciliation started (%s, root=%r)",
            ctx.mode_label,
            self._listing_root,
            extra={"event": events.RECONCILE_START},
        )

        index = await self._media.reference_index()
        queued = set(await self._sweeps.queued_ids())
        folders = await self._listing_folders()
        candidates = sorted(set(index) | folders | queued)
        logger.debug(
            "Candidates: %d (indexed=%d folders=%d queued=%d)",
            len(candidates),
            len(index),
            len(folders),
            len(queued),
        )

        report = ReconcileReport(dry_run=ctx.dry_run)
        for listing_id in candidates:
            result = await self._reconcile_prefix(listing_id, index.get(listing_id, set()), ctx)
            report.listings.append(result)
            if listing_id in queued and await self._drain(listing_id, result, ctx):
                report.swept.append(listing_id)

        logger.info(report.format_summary(), extra={"event": events.RECONCILE_COMPLETE})
        return report

    async def reconcile_listing(
        self, listing_id: str, ctx: RunContext | None = None
    ) -> ListingReconcileResult:
        """Reconcile a single listing prefix (used right after a delete).

        The listing's queued sweep, if any, is drained on full success.

        Raises:
            StoreError: If the listing's Media rows cannot be read.
        """
        ctx = ctx or RunContext()
        claimed = set(await self._media.filenames_for(listing_id))
        result = await self._reconcile_prefix(listing_id, claimed, ctx)
        await self._drain(listing_id, result, ctx)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _listing_folders(self) -> set[str]:
        """First-level folder names under the listing root (best effort)."""
        try:
            entries = await list_prefix(
                self._store,
                self._listing_root,
                page_size=self._page_size,
                max_pages=self._max_pages,
                call_timeout_s=self._call_timeout_s,
            )
        except (BlobStoreError, TimeoutError) as exc:
            logger.error(
                "Could not list %r; scanning indexed and queued listings only: %s",
                self._listing_root,
                str(exc) or type(exc).__name__,
                extra={"event": events.RECONCILE_LISTING_ERROR},
            )
            return set()
        return {entry.name for entry in entries if not entry.is_file and entry.name}

    async def _reconcile_prefix(
        self, listing_id: str, claimed: set[str], ctx: RunContext
    ) -> ListingReconcileResult:
        result = ListingReconcileResult(listing_id=listing_id)
        prefix = listing_prefix(listing_id, self._listing_root)

        try:
            entries = await list_prefix(
                self._store,
                prefix,
                page_size=self._page_size,
                max_pages=self._max_pages,
                call_timeout_s=self._call_timeout_s,
            )
        except (BlobStoreError, TimeoutError) as exc:
            result.error = str(exc) or type(exc).__name__
            logger.warning(
                "Skipping listing %s: listing %r failed: %s",
                listing_id,
                prefix,
                result.error,
                extra={"event": events.RECONCILE_LISTING_ERROR},
            )
            return result

        files = [entry.name for entry in entries if entry.is_file]
        result.files_found = len(files)
        result.orphans = sorted(set(files) - claimed)
        if not result.orphans:
            return result

        logger.info(
            "Listing %s: %d orphan(s) of %d file(s)%s",
            listing_id,
            len(result.orphans),
            len(files),
            " (dry run, not deleted)" if ctx.dry_run else "",
            extra={"event": events.ORPHANS_FOUND},
        )
        if not ctx.allows_deletes:
            return result

        for chunk in chunked(result.orphans, self._delete_batch_size):
            keys = [media_key(listing_id, name, self._listing_root) for name in chunk]
            try:
                async with asyncio.timeout(self._call_timeout_s):
                    removed = await self._store.remove(keys)
            except (BlobStoreError, TimeoutError) as exc:
                result.failed_chunks += 1
                logger.error(
                    "Delete of %d key(s) under %r failed; skipped: %s",
                    len(keys),
                    prefix,
                    str(exc) or type(exc).__name__,
                    extra={"event": events.ORPHAN_CHUNK_ERROR},
                )
                continue

            result.deleted += removed
            if removed < len(keys):
                logger.warning(
                    "Store acknowledged %d of %d deletes under %r",
                    removed,
                    len(keys),
                    prefix,
                    extra={"event": events.ORPHAN_CHUNK_DELETED},
                )
            else:
                logger.debug(
                    "Deleted %d key(s) under %r",
                    removed,
                    prefix,
                    extra={"event": events.ORPHAN_CHUNK_DELETED},
                )
        return result

    async def _drain(self, listing_id: str, result: ListingReconcileResult, ctx: RunContext) -> bool:
        """Dequeue a swept listing id; a failure leaves it queued for next run."""
        if not ctx.allows_deletes or not result.ok:
            return False
        try:
            drained = await self._sweeps.dequeue(listing_id)
        except StoreError as exc:
            logger.warning("Could not dequeue sweep of %s: %s", listing_id, exc)
            return False
        if drained:
            logger.info(
                "Storage sweep of listing %s complete.",
                listing_id,
                extra={"event": events.SWEEP_DRAINED},
            )
        return drained
