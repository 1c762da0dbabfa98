"""Propmarket exception taxonomy.

Every custom exception inherits from :class:`PropmarketError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    PropmarketError
    ├── ConfigError
    ├── InvalidRequestError
    ├── NotFoundError
    ├── StoreError
    │   └── StoreWriteError
    │       ├── ListingAlreadyExistsError
    │       ├── AuditWriteError
    │       └── NotificationWriteError
    └── BlobStoreError
        └── BlobStoreRateLimitError

Each class carries an ``http_status`` hint so the (external) web layer can map
an error to a response code without a lookup table of its own.

Usage:

    from propmarket.core.exceptions import NotFoundError

    raise NotFoundError("listing", listing_id)
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

__all__ = [
    "PropmarketError",
    # Config
    "ConfigError",
    # Request
    "InvalidRequestError",
    "NotFoundError",
    # Relational store
    "StoreError",
    "StoreWriteError",
    "ListingAlreadyExistsError",
    "AuditWriteError",
    "NotificationWriteError",
    # Blob store
    "BlobStoreError",
    "BlobStoreRateLimitError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class PropmarketError(Exception):
    """Root exception for all Propmarket errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible for precise error
    handling.
    """

    http_status: ClassVar[int] = 500


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(PropmarketError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``STORAGE_BACKEND=supabase`` without ``SUPABASE_URL``.
        - A service-role key is missing for a write-capable bucket client.
    """


# ---------------------------------------------------------------------------
# Request layer
# ---------------------------------------------------------------------------


class InvalidRequestError(PropmarketError):
    """Raised when a required field is missing or malformed.

    The caller is at fault; the request must not be retried unchanged.

    Args:
        message: Human-readable error description.
        details: Optional field-level issues, each a ``{"field", "issue"}``
            mapping.
    """

    http_status: ClassVar[int] = 400

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        self.details = details or []
        super().__init__(message)


class NotFoundError(PropmarketError):
    """Raised when a referenced entity does not exist.

    Args:
        entity: Entity kind, e.g. ``"listing"``.
        entity_id: The identifier that was looked up.
    """

    http_status: ClassVar[int] = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id!r}")


# ---------------------------------------------------------------------------
# Relational store layer
# ---------------------------------------------------------------------------


class StoreError(PropmarketError):
    """Raised when a database read or persistence operation fails."""


class StoreWriteError(StoreError):
    """Raised when an insert, update or delete against the database fails."""


class ListingAlreadyExistsError(StoreWriteError):
    """Raised when a listing is created with an id that is already taken.

    Args:
        listing_id: The caller-supplied listing identifier.
    """

    http_status: ClassVar[int] = 409

    def __init__(self, listing_id: str) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing already exists: {listing_id!r}")


class AuditWriteError(StoreWriteError):
    """Raised when the status-change audit row cannot be written.

    The status transition that required the audit row is **not** applied.
    """


class NotificationWriteError(StoreWriteError):
    """Raised when an owner notification cannot be written.

    Notifications are mandatory: the enclosing status change is rolled back
    together with its audit row.
    """


# ---------------------------------------------------------------------------
# Blob store layer
# ---------------------------------------------------------------------------


class BlobStoreError(PropmarketError):
    """Base class for errors raised by a blob store backend.

    Args:
        operation: Short name of the failed operation (``"list"``,
            ``"upload"``, ``"move"``, ``"remove"``).
        message: Human-readable error description.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


class BlobStoreRateLimitError(BlobStoreError):
    """Raised when the storage API answers HTTP 429.

    Args:
        operation: Short name of the failed operation.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    def __init__(self, operation: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(operation, f"Rate limited, {detail}")
