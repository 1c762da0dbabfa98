"""SQLite-backed relational store: schema, transactions and repositories."""

from propmarket.storage.database import (
    DEFAULT_DB_PATH,
    Database,
    create_schema,
    open_db,
    open_memory_db,
)
from propmarket.storage.repository import (
    AuditRepository,
    ListingRepository,
    MediaRepository,
    NotificationRepository,
    SweepRepository,
    UserRepository,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "Database",
    "open_db",
    "open_memory_db",
    "create_schema",
    "ListingRepository",
    "MediaRepository",
    "AuditRepository",
    "NotificationRepository",
    "SweepRepository",
    "UserRepository",
]
