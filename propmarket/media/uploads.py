"""Media uploads to the blob store.

:class:`MediaUploader` writes client files under one of two prefixes:

* ``<listing_root>/<listing_id>/`` when the listing already exists, or
* ``<staging_root>/<temp_id>/`` (``anon`` when no temp id is supplied) for
  uploads made while the listing form is still being filled in.  The media
  attacher moves staged files to the permanent prefix on create.

Each stored name is ``<epoch-ms>-<sanitised original name>`` so two uploads
of ``photo.jpg`` never collide (uploads never overwrite).  At most
``max_files`` files of at most ``max_bytes`` each are accepted per call;
empty, oversized or failing files are skipped and reported, and the call only
fails when nothing at all was accepted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from propmarket.blobstore.base import BlobStore
from propmarket.core import events
from propmarket.core.exceptions import BlobStoreError, InvalidRequestError
from propmarket.core.keys import (
    DEFAULT_LISTING_ROOT,
    DEFAULT_STAGING_ROOT,
    join_key,
    listing_prefix,
    sanitize_filename,
    staging_prefix,
)

__all__ = [
    "UploadFile",
    "UploadedMedia",
    "UploadResult",
    "MediaUploader",
    "infer_content_type",
]

logger = logging.getLogger(__name__)

_CONTENT_TYPES: Final[dict[str, str]] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "avif": "image/avif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "pdf": "application/pdf",
}

_FALLBACK_CONTENT_TYPE: Final[str] = "application/octet-stream"


def infer_content_type(filename: str) -> str:
    """Map a filename extension to a content type (octet-stream if unknown)."""
    _, dot, ext = filename.rpartition(".")
    if not dot:
        return _FALLBACK_CONTENT_TYPE
    return _CONTENT_TYPES.get(ext.lower(), _FALLBACK_CONTENT_TYPE)


@dataclass(frozen=True)
class UploadFile:
    """One file as received from the client."""

    filename: str
    content: bytes


@dataclass(frozen=True)
class UploadedMedia:
    """One file that was stored.

    Attributes:
        filename: Stored object name (the value to attach to a listing).
        key: Full object key.
        content_type: Content type sent to the store.
        size: Byte size.
        url: Public URL when the bucket's public base is known.
    """

    filename: str
    key: str
    content_type: str
    size: int
    url: str | None = None


@dataclass
class UploadResult:
    """Outcome of one upload call."""

    prefix: str
    uploaded: list[UploadedMedia] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)

    @property
    def filenames(self) -> list[str]:
        return [item.filename for item in self.uploaded]

    def to_payload(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "files": [
                {"filename": m.filename, "path": m.key, "url": m.url, "size": m.size}
                for m in self.uploaded
            ],
            "skipped": list(self.skipped),
        }


class MediaUploader:
    """Stores client uploads under a listing or staging prefix.

    Args:
        store: Destination blob store.
        listing_root: Permanent key prefix.
        staging_root: Staging key prefix.
        max_files: Files accepted per call.
        max_bytes: Per-file size limit.
        public_base: Public URL prefix used to build ``url`` values.
        call_timeout_s: Timeout applied to each upload call.
        clock: Returns the current time in seconds (for stored-name prefixes).
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        listing_root: str = DEFAULT_LISTING_ROOT,
        staging_root: str = DEFAULT_STAGING_ROOT,
        max_files: int = 4,
        max_bytes: int = 20 * 1024 * 1024,
        public_base: str | None = None,
        call_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._listing_root = listing_root
        self._staging_root = staging_root
        self._max_files = max_files
        self._max_bytes = max_bytes
        self._public_base = public_base
        self._call_timeout_s = call_timeout_s
        self._clock = clock

    def target_prefix(self, listing_id: str | None = None, temp_id: str | None = None) -> str:
        """Return the prefix an upload with these ids is written under."""
        if listing_id is not None and listing_id.strip():
            return listing_prefix(listing_id.strip(), self._listing_root)
        return staging_prefix(temp_id, self._staging_root)

    async def upload_media(
        self,
        files: Sequence[UploadFile],
        listing_id: str | None = None,
        temp_id: str | None = None,
    ) -> UploadResult:
        """Upload *files* and return what was stored.

        Raises:
            InvalidRequestError: If *files* is empty or no file was accepted.
        """
        if not files:
            raise InvalidRequestError(
                "No files uploaded", details=[{"field": "files", "issue": "missing"}]
            )

        result = UploadResult(prefix=self.target_prefix(listing_id, temp_id))
        for extra in files[self._max_files :]:
            self._skip(result, extra.filename, f"more than {self._max_files} files")

        stamp = int(self._clock() * 1000)
        for upload in files[: self._max_files]:
            safe = sanitize_filename(upload.filename)
            if not safe:
                self._skip(result, upload.filename, "unusable filename")
                continue
            if not upload.content:
                self._skip(result, upload.filename, "empty file")
                continue
            if len(upload.content) > self._max_bytes:
                self._skip(result, upload.filename, f"larger than {self._max_bytes} bytes")
                continue

            stored_name = f"{stamp}-{safe}"
            key = join_key(result.prefix, stored_name)
            content_type = infer_content_type(safe)
            try:
                async with asyncio.timeout(self._call_timeout_s):
                    await self._store.upload(key, upload.content, content_type)
            except (BlobStoreError, TimeoutError) as exc:
                self._skip(result, upload.filename, f"upload failed: {str(exc) or type(exc).__name__}")
                continue

            url = f"{self._public_base}{key}" if self._public_base else None
            result.uploaded.append(
                UploadedMedia(
                    filename=stored_name,
                    key=key,
                    content_type=content_type,
                    size=len(upload.content),
                    url=url,
                )
            )
            logger.info(
                "Uploaded %s (%d bytes)",
                key,
                len(upload.content),
                extra={"event": events.MEDIA_UPLOADED},
            )

        if not result.uploaded:
            raise InvalidRequestError("No file could be uploaded", details=result.skipped)
        return result

    @staticmethod
    def _skip(result: UploadResult, filename: str, reason: str) -> None:
        result.skipped.append({"field": filename, "issue": reason})
        logger.warning(
            "Skipped upload %r: %s",
            filename,
            reason,
            extra={"event": events.MEDIA_UPLOAD_SKIPPED},
        )
