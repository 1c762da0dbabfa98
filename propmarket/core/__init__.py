"""Core domain models, settings, logging configuration, and shared utilities."""

from propmarket.core.exceptions import (
    AuditWriteError,
    BlobStoreError,
    BlobStoreRateLimitError,
    ConfigError,
    InvalidRequestError,
    ListingAlreadyExistsError,
    NotFoundError,
    NotificationWriteError,
    PropmarketError,
    StoreError,
    StoreWriteError,
)
from propmarket.core.logging_config import JsonFormatter, configure_logging, new_request_id
from propmarket.core.models import (
    Listing,
    Media,
    Notification,
    PostingStatus,
    StatusChange,
    User,
)
from propmarket.core.run_context import RunContext
from propmarket.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "new_request_id",
    "JsonFormatter",
    # Domain models
    "Listing",
    "Media",
    "Notification",
    "PostingStatus",
    "StatusChange",
    "User",
    # Settings / run modes
    "Settings",
    "RunContext",
    # Exceptions
    "PropmarketError",
    "ConfigError",
    "InvalidRequestError",
    "NotFoundError",
    "StoreError",
    "StoreWriteError",
    "ListingAlreadyExistsError",
    "AuditWriteError",
    "NotificationWriteError",
    "BlobStoreError",
    "BlobStoreRateLimitError",
]
