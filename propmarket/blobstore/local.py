"""Filesystem-backed bucket.

Maps keys to paths under a base directory (``properties/P1/a.jpg`` →
``<base>/properties/P1/a.jpg``).  Used for local development and as the
default backend in tests; the semantics match the Supabase client closely
enough that the reconciler cannot tell them apart.

Filesystem calls are pushed to a worker thread with :func:`asyncio.to_thread`
so a slow disk never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from propmarket.blobstore.base import BlobEntry, BlobStore
from propmarket.core.exceptions import BlobStoreError

__all__ = ["LocalBlobStore"]

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """A bucket stored as a directory tree.

    Args:
        base_dir: Root directory of the bucket.  Created if missing.
    """

    backend = "local"

    def __init__(self, base_dir: str | Path) -> None:
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # BlobStore contract
    # ------------------------------------------------------------------

    async def list(self, prefix: str, *, limit: int = 100, offset: int = 0) -> list[BlobEntry]:
        folder = self._path(prefix, operation="list") if prefix.strip("/") else self.base
        return await asyncio.to_thread(self._list_sync, folder, limit, offset)

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key, operation="upload")
        await asyncio.to_thread(self._upload_sync, path, key, data)
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), content_type)

    async def move(self, from_key: str, to_key: str) -> None:
        source = self._path(from_key, operation="move")
        target = self._path(to_key, operation="move")
        await asyncio.to_thread(self._move_sync, source, target, from_key, to_key)

    async def remove(self, keys: Sequence[str]) -> int:
        paths = [self._path(key, operation="remove") for key in keys]
        return await asyncio.to_thread(self._remove_sync, paths)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def exists(self, key: str) -> bool:
        """Return ``True`` if an object is stored at *key*."""
        return self._path(key, operation="exists").is_file()

    def _path(self, key: str, *, operation: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise BlobStoreError(operation, f"Invalid key {key!r}")
        return self.base.joinpath(*parts)

    @staticmethod
    def _list_sync(folder: Path, limit: int, offset: int) -> list[BlobEntry]:
        if not folder.is_dir():
            return []
        entries: list[BlobEntry] = []
        with os.scandir(folder) as it:
            for item in it:
                if item.is_dir():
                    entries.append(BlobEntry(name=item.name))
                elif item.is_file():
                    entries.append(BlobEntry(name=item.name, size=item.stat().st_size))
        entries.sort(key=lambda entry: entry.name)
        return entries[offset : offset + limit]

    @staticmethod
    def _upload_sync(path: Path, key: str, data: bytes) -> None:
        if path.exists():
            raise BlobStoreError("upload", f"Object already exists: {key!r}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise BlobStoreError("upload", f"{key!r}: {exc}") from exc

    @staticmethod
    def _move_sync(source: Path, target: Path, from_key: str, to_key: str) -> None:
        if not source.is_file():
            raise BlobStoreError("move", f"Object not found: {from_key!r}")
        if target.exists():
            raise BlobStoreError("move", f"Destination already exists: {to_key!r}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            source.replace(target)
        except OSError as exc:
            raise BlobStoreError("move", f"{from_key!r} -> {to_key!r}: {exc}") from exc

    @staticmethod
    def _remove_sync(paths: list[Path]) -> int:
        removed = 0
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise BlobStoreError("remove", f"{path}: {exc}") from exc
            removed += 1
        return removed
