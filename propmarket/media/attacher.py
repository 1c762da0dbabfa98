"""Associates uploaded files with listings.

Two entry points, one per listing write path:

* :meth:`MediaAttacher.attach_on_create` — claims the filenames for a brand
  new listing and, when the files were uploaded to a staging folder before the
  listing id existed, moves each one to its permanent key.  Moves are best
  effort: a failure is logged and the create still succeeds.  The reconciler
  never scans the staging root, so a file whose move failed stays there.
* :meth:`MediaAttacher.attach_on_update` — claims only the filenames that are
  not attached yet.  Names missing from the desired list are **not** removed
  (insert-only, never retract); the reconciler or a whole-listing delete is
  the only way media goes away.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from propmarket.blobstore.base import BlobStore
from propmarket.core import events
from propmarket.core.exceptions import BlobStoreError
from propmarket.core.keys import (
    DEFAULT_LISTING_ROOT,
    DEFAULT_STAGING_ROOT,
    KEY_SEPARATOR,
    media_key,
    staging_key,
)
from propmarket.storage.repository import MediaRepository

__all__ = ["MediaAttacher"]

logger = logging.getLogger(__name__)


def _clean_filenames(filenames: Iterable[str]) -> list[str]:
    """De-duplicate *filenames* preserving order; drop blanks and nested paths."""
    cleaned: list[str] = []
    for raw in filenames:
        name = str(raw).strip()
        if not name:
            continue
        if KEY_SEPARATOR in name or name in (".", ".."):
            logger.warning("Ignoring media filename %r: not a bare filename.", raw)
            continue
        cleaned.append(name)
    return list(dict.fromkeys(cleaned))


class MediaAttacher:
    """Writes ``listing_media`` claims and migrates staged uploads.

    Args:
        media: Media claim data-access object.
        store: Blob store holding the uploaded bytes.
        listing_root: Permanent key prefix (``properties``).
        staging_root: Staging key prefix (``staging``).
        call_timeout_s: Timeout applied to each move call.
    """

    def __init__(
        self,
        media: MediaRepository,
        store: BlobStore,
        *,
        listing_root: str = DEFAULT_LISTING_ROOT,
        staging_root: str = DEFAULT_STAGING_ROOT,
        call_timeout_s: float = 30.0,
    ) -> None:
        self._media = media
        self._store = store
        self._listing_root = listing_root
        self._staging_root = staging_root
        self._call_timeout_s = call_timeout_s

    async def attach_on_create(
        self,
        listing_id: str,
        filenames: Iterable[str],
        temp_id: str | None = None,
    ) -> list[str]:
        """Claim *filenames* for a new listing, then move staged files.

        Args:
            listing_id: The freshly created listing.
            filenames: Uploaded filenames; duplicates are attached once.
            temp_id: Staging folder the files were uploaded to, if any.
                Without it the files are assumed to be at their permanent
                key already.

        Returns:
            The filenames that were attached.

        Raises:
            StoreWriteError: If the Media rows cannot be written.
        """
        attached = await self.claim(listing_id, filenames)
        await self.move_staged(listing_id, attached, temp_id)
        return attached

    async def claim(self, listing_id: str, filenames: Iterable[str]) -> list[str]:
        """Write the Media rows for *filenames* (no blob store calls).

        Safe to call inside a database transaction.
        """
        attached = await self._media.add(listing_id, _clean_filenames(filenames))
        if attached:
            logger.info(
                "Attached %d media file(s) to listing %s",
                len(attached),
                listing_id,
                extra={"event": events.MEDIA_ATTACHED},
            )
        return attached

    async def move_staged(
        self, listing_id: str, filenames: Iterable[str], temp_id: str | None
    ) -> int:
        """Best-effort move of staged files to their permanent keys.

        Returns:
            How many files were moved.  Zero when *temp_id* is blank.
        """
        if temp_id is None or not temp_id.strip():
            return 0
        moved = 0
        for name in filenames:
            if await self._move_from_staging(listing_id, temp_id, name):
                moved += 1
        return moved

    async def attach_on_update(self, listing_id: str, desired: Iterable[str]) -> list[str]:
        """Claim the filenames in *desired* that are not attached yet.

        Returns:
            The newly attached filenames (possibly empty).

        Raises:
            StoreWriteError: If the Media rows cannot be written.
        """
        existing = set(await self._media.filenames_for(listing_id))
        new_names = [name for name in _clean_filenames(desired) if name not in existing]
        if not new_names:
            return []
        attached = await self._media.add(listing_id, new_names)
        logger.info(
            "Attached %d new media file(s) to listing %s",
            len(attached),
            listing_id,
            extra={"event": events.MEDIA_ATTACHED},
        )
        return attached

    async def _move_from_staging(self, listing_id: str, temp_id: str, filename: str) -> bool:
        source = staging_key(temp_id, filename, self._staging_root)
        target = media_key(listing_id, filename, self._listing_root)
        try:
            async with asyncio.timeout(self._call_timeout_s):
                await self._store.move(source, target)
        except (BlobStoreError, TimeoutError) as exc:
            logger.warning(
                "Could not move %s → %s: %s",
                source,
                target,
                exc,
                extra={"event": events.MEDIA_MOVE_ERROR},
            )
            return False
        logger.debug("Moved %s → %s", source, target)
        return True
