"""Blob store interface contract.

Every backend (the local filesystem bucket used in development and tests, the
Supabase Storage REST client used in production) subclasses :class:`BlobStore`
and implements the four primitives the media layer needs:

* :meth:`~BlobStore.list` — one page of the entries directly under a prefix.
* :meth:`~BlobStore.upload` — write bytes at a key (never overwrites).
* :meth:`~BlobStore.move` — rename an object.
* :meth:`~BlobStore.remove` — batch delete; returns what the store acknowledged.

Design decisions
----------------
* **One level per list call**: entries carry a byte ``size`` when they are
  objects and ``None`` when they are sub-folders, mirroring the storage API.
  Callers that need recursion (the legacy whole-bucket scan) queue folders
  themselves.
* **Acknowledged counts**: :meth:`~BlobStore.remove` returns the number the
  store reports deleted, which may be lower than the number requested.
* **Async context manager built-in**, as backends may hold a connection pool.

Typical usage::

    async with LocalBlobStore("data/bucket") as store:
        page = await store.list("properties/P1", limit=100, offset=0)
        files = [entry.name for entry in page if entry.is_file]
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import ClassVar

__all__ = ["BlobEntry", "BlobStore"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobEntry:
    """One entry returned by :meth:`BlobStore.list`.

    Attributes:
        name: Entry name relative to the listed prefix (no slashes).
        size: Object size in bytes, or ``None`` for a sub-folder.
    """

    name: str
    size: int | None = None

    @property
    def is_file(self) -> bool:
        """``True`` when the entry is an object rather than a folder."""
        return self.size is not None


class BlobStore(ABC):
    """Abstract base for blob store backends.

    Attributes:
        backend: Short backend name used in log lines.
    """

    backend: ClassVar[str]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this store.  Default: no-op."""

    async def __aenter__(self) -> BlobStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def list(self, prefix: str, *, limit: int = 100, offset: int = 0) -> list[BlobEntry]:
        """Return one page of the entries directly under *prefix*.

        Entries are sorted by name ascending so ``offset`` pagination is
        stable.  A prefix that does not exist yields an empty page.

        Raises:
            BlobStoreError: If the listing call fails.
        """

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Store *data* at *key*.

        Raises:
            BlobStoreError: If the upload fails or *key* is already taken.
        """

    @abstractmethod
    async def move(self, from_key: str, to_key: str) -> None:
        """Rename the object at *from_key* to *to_key*.

        Raises:
            BlobStoreError: If the source is missing or the move fails.
        """

    @abstractmethod
    async def remove(self, keys: Sequence[str]) -> int:
        """Delete every key in *keys* in one call.

        Returns:
            The number of objects the store acknowledged deleting.  Keys
            that did not exist are not counted.

        Raises:
            BlobStoreError: If the batch call fails as a whole.
        """
