"""Whole-bucket reconciliation for data that predates ``listing_media``.

Older rows referenced bucket objects by URL inside arbitrary text columns
(``media`` arrays serialised as JSON, profile pictures on ``users``) instead
of Media rows.  This fallback finds references the way those clients wrote
them:

* the bucket's public URL base
  (``<SUPABASE_URL>/storage/v1/object/public/<bucket>/<path>``), and
* bare ``media/<path>`` strings.

Every field of every ``listings`` and ``users`` row is walked (nested
dicts/lists included).  Paths are normalised (leading ``/`` and ``public/``
stripped, folder-like paths ending in ``/`` dropped) and URL-decoded variants
are added.  Keys claimed by ``listing_media`` rows are always treated as
referenced, and the staging root is never scanned, so this fallback cannot
delete anything the primary reconciler would keep.

Orphans are the bucket paths nobody references; they are deleted in chunks
with the same best-effort policy as the primary reconciler.

Typical usage::

    legacy = LegacyRootReconciler(store, listings, users, media,
                                  public_base=settings.public_media_base)
    report = await legacy.run(RunContext(dry_run=True))
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

from propmarket.blobstore.base import BlobStore
from propmarket.core import events
from propmarket.core.exceptions import BlobStoreError
from propmarket.core.keys import DEFAULT_LISTING_ROOT, DEFAULT_STAGING_ROOT, join_key, media_key
from propmarket.core.run_context import RunContext
from propmarket.media.reconciler import chunked, list_prefix
from propmarket.storage.repository import ListingRepository, MediaRepository, UserRepository

__all__ = [
    "LegacyReconcileReport",
    "LegacyRootReconciler",
    "collect_references",
    "normalise_references",
]

logger = logging.getLogger(__name__)

_MEDIA_PATH_RE = re.compile(r"(?:^|[^A-Za-z0-9_])media/([A-Za-z0-9._\-/]+)")


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def _walk_strings(value: Any) -> Iterable[str]:
    if value is None:
        return
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, list | tuple | set):
        for item in value:
            yield from _walk_strings(item)


def collect_references(rows: Iterable[Any], public_base: str | None) -> set[str]:
    """Extract raw bucket paths referenced anywhere inside *rows*.

    Args:
        rows: Row dicts (or any nesting of dicts, lists and strings).
        public_base: Public URL prefix of the bucket, ending in ``/``; when
            ``None`` only ``media/<path>`` references are found.

    Returns:
        Raw (un-normalised) paths.
    """
    full_re = (
        re.compile(re.escape(public_base) + r"""([^"\s)]+)""") if public_base else None
    )
    found: set[str] = set()
    for text in _walk_strings(list(rows)):
        if full_re is not None:
            found.update(m.group(1) for m in full_re.finditer(text) if m.group(1))
        found.update(m.group(1) for m in _MEDIA_PATH_RE.finditer(text) if m.group(1))
    return found


def _normalise_path(path: str) -> str:
    cleaned = path.lstrip("/")
    if cleaned.startswith("public/"):
        cleaned = cleaned[len("public/") :]
    return cleaned


def normalise_references(paths: Iterable[str]) -> set[str]:
    """Normalise raw paths and add their URL-decoded variants.

    Example::

        assert normalise_references(["/public/a%20b.jpg"]) == {"a%20b.jpg", "a b.jpg"}
    """
    normalised = {_normalise_path(p) for p in paths}
    normalised = {p for p in normalised if p and not p.endswith("/")}
    for path in list(normalised):
        decoded = unquote(path)
        if decoded and decoded != path:
            normalised.add(decoded)
    return normalised


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class LegacyReconcileReport:
    """Outcome of one whole-bucket run.

    Attributes:
        dry_run: ``True`` when orphans were reported instead of deleted.
        total_files: Objects found in the bucket (staging root excluded).
        referenced_count: Distinct normalised references found in the DB.
        orphans: Bucket paths nobody references.
        dangling_refs: Referenced paths with no object in the bucket.
        deleted_count: Objects the store acknowledged deleting.
        failed_chunks: Delete chunks that raised or timed out.
    """

    dry_run: bool = False
    total_files: int = 0
    referenced_count: int = 0
    orphans: list[str] = field(default_factory=list)
    dangling_refs: list[str] = field(default_factory=list)
    deleted_count: int = 0
    failed_chunks: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "deletedCount": self.deleted_count,
            "dryRun": self.dry_run,
            "totalFiles": self.total_files,
            "referencedCount": self.referenced_count,
            "orphanCount": len(self.orphans),
            "danglingDbRefCount": len(self.dangling_refs),
            "failedChunks": self.failed_chunks,
            "orphans": list(self.orphans),
        }


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class LegacyRootReconciler:
    """Deletes bucket objects that no row references in any form.

    Args:
        store: Blob store to scan.
        listings: Source of ``listings`` rows.
        users: Source of ``users`` rows.
        media: Source of ``listing_media`` claims (always kept).
        public_base: Public URL prefix of the bucket, ending in ``/``.
        listing_root: Key prefix of listing folders.
        staging_root: Key prefix excluded from the scan.
        page_size: Entries per list call.
        max_pages: Cap on list calls per folder.
        delete_batch_size: Keys per delete call.
        call_timeout_s: Timeout applied to each blob store call.
    """

    def __init__(
        self,
        store: BlobStore,
        listings: ListingRepository,
        users: UserRepository,
        media: MediaRepository,
        *,
        public_base: str | None = None,
        listing_root: str = DEFAULT_LISTING_ROOT,
        staging_root: str = DEFAULT_STAGING_ROOT,
        page_size: int = 1000,
        max_pages: int = 1000,
        delete_batch_size: int = 100,
        call_timeout_s: float = 30.0,
    ) -> None:
        self._store = store
        self._listings = listings
        self._users = users
        self._media = media
        self._public_base = public_base
        self._listing_root = listing_root
        self._staging_root = staging_root
        self._page_size = page_size
        self._max_pages = max_pages
        self._delete_batch_size = delete_batch_size
        self._call_timeout_s = call_timeout_s

    async def run(self, ctx: RunContext | None = None) -> LegacyReconcileReport:
        """Scan the whole bucket and delete unreferenced objects.

        Unlike the per-listing reconciler, a failure to list the bucket
        aborts the run: without the full path set nothing can be compared.

        Raises:
            BlobStoreError: If listing the bucket fails.
            TimeoutError: If a list call exceeds the call timeout.
            StoreError: If the database rows cannot be read.
        """
        ctx = ctx or RunContext()
        logger.info(
            "Legacy whole-bucket reconciliation started (%s)",
            ctx.mode_label,
            extra={"event": events.RECONCILE_START},
        )

        paths = await self._list_bucket()
        referenced = await self._references()

        report = LegacyReconcileReport(
            dry_run=ctx.dry_run,
            total_files=len(paths),
            referenced_count=len(referenced),
            orphans=sorted(p for p in paths if _normalise_path(p) not in referenced),
            dangling_refs=sorted(referenced - set(paths)),
        )

        if report.orphans and ctx.allows_deletes:
            for chunk in chunked(report.orphans, self._delete_batch_size):
                try:
                    async with asyncio.timeout(self._call_timeout_s):
                        report.deleted_count += await self._store.remove(chunk)
                except (BlobStoreError, TimeoutError) as exc:
                    report.failed_chunks += 1
                    logger.error(
                        "Delete of %d legacy orphan(s) failed; skipped: %s",
                        len(chunk),
                        str(exc) or type(exc).__name__,
                        extra={"event": events.ORPHAN_CHUNK_ERROR},
                    )

        logger.info(
            "legacy reconcile (%s) — files=%d referenced=%d orphans=%d deleted=%d dangling=%d",
            ctx.mode_label,
            report.total_files,
            report.referenced_count,
            len(report.orphans),
            report.deleted_count,
            len(report.dangling_refs),
            extra={"event": events.RECONCILE_COMPLETE},
        )
        return report

    async def _list_bucket(self) -> list[str]:
        """Breadth-first list every object path in the bucket."""
        paths: list[str] = []
        queue: deque[str] = deque([""])
        while queue:
            prefix = queue.popleft()
            entries = await list_prefix(
                self._store,
                prefix,
                page_size=self._page_size,
                max_pages=self._max_pages,
                call_timeout_s=self._call_timeout_s,
            )
            for entry in entries:
                if not entry.name:
                    continue
                full = join_key(prefix, entry.name)
                if entry.is_file:
                    paths.append(full)
                elif full != self._staging_root:
                    queue.append(full)
        return paths

    async def _references(self) -> set[str]:
        rows: list[dict[str, Any]] = []
        rows.extend(await self._listings.raw_rows())
        rows.extend(await self._users.raw_rows())
        referenced = normalise_references(collect_references(rows, self._public_base))

        for listing_id, filenames in (await self._media.reference_index()).items():
            referenced.update(media_key(listing_id, name, self._listing_root) for name in filenames)
        return referenced
