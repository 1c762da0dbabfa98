"""Application wiring: build every component from :class:`Settings`.

:func:`open_app` is the single place that knows how the pieces fit together.
It is used by :mod:`propmarket.__main__` and by any web layer that embeds
Propmarket.

Component wiring
----------------
Entering :func:`open_app`:

1. Validates the blob store configuration (:func:`build_blob_store`); a
   ``supabase`` backend without URL and service-role key raises
   :exc:`~propmarket.core.exceptions.ConfigError` before any I/O.
2. Opens the SQLite database (schema bootstrap included).
3. Creates the repositories, the notifier, the status machine, the media
   attacher/uploader, both reconcilers and the listing service.
4. Tears everything down on exit, including on exceptions, via
   :class:`contextlib.AsyncExitStack`.

Typical usage::

    async with open_app(Settings()) as app:
        report = await app.reconciler.run()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

from propmarket.blobstore.base import BlobStore
from propmarket.blobstore.local import LocalBlobStore
from propmarket.blobstore.supabase import SupabaseBlobStore
from propmarket.core.exceptions import ConfigError
from propmarket.core.models import PostingStatus
from propmarket.core.settings import Settings
from propmarket.listings.service import ListingService
from propmarket.listings.status import ListingStatusMachine
from propmarket.media.attacher import MediaAttacher
from propmarket.media.legacy import LegacyRootReconciler
from propmarket.media.reconciler import OrphanReconciler
from propmarket.media.uploads import MediaUploader
from propmarket.notifiers.notifier import Notifier
from propmarket.storage.database import Database, open_db
from propmarket.storage.repository import (
    AuditRepository,
    ListingRepository,
    MediaRepository,
    NotificationRepository,
    SweepRepository,
    UserRepository,
)

__all__ = ["App", "build_app", "build_blob_store", "open_app"]

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Every wired component of one running instance."""

    settings: Settings
    db: Database
    store: BlobStore
    listings: ListingRepository
    media: MediaRepository
    audit: AuditRepository
    sweeps: SweepRepository
    users: UserRepository
    notifier: Notifier
    status_machine: ListingStatusMachine
    attacher: MediaAttacher
    uploader: MediaUploader
    reconciler: OrphanReconciler
    legacy_reconciler: LegacyRootReconciler
    service: ListingService


def build_blob_store(settings: Settings) -> BlobStore:
    """Instantiate the configured blob store backend.

    Raises:
        ConfigError: ``STORAGE_BACKEND=supabase`` without ``SUPABASE_URL``
            and ``SUPABASE_SERVICE_ROLE_KEY``.
    """
    if settings.storage_backend == "supabase":
        if not settings.supabase_configured:
            raise ConfigError(
                "STORAGE_BACKEND=supabase requires SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY in .env (or env vars)."
            )
        logger.debug("Using Supabase storage bucket %r.", settings.storage_bucket)
        return SupabaseBlobStore(
            url=settings.supabase_url,
            service_key=settings.supabase_service_role_key,
            bucket=settings.storage_bucket,
            max_attempts=settings.http_max_attempts,
            timeout=settings.http_request_timeout_s,
        )
    logger.debug("Using local bucket at %s.", settings.local_storage_dir)
    return LocalBlobStore(settings.local_storage_dir)


def build_app(settings: Settings, db: Database, store: BlobStore) -> App:
    """Wire every component on top of an open database and blob store."""
    listings = ListingRepository(db)
    media = MediaRepository(db, listing_root=settings.listing_root_prefix)
    audit = AuditRepository(db)
    sweeps = SweepRepository(db)
    users = UserRepository(db)
    notifier = Notifier(
        NotificationRepository(db),
        links={
            PostingStatus.APPROVED: settings.notification_link_approved,
            PostingStatus.REJECTED: settings.notification_link_rejected,
        },
    )
    machine = ListingStatusMachine(db, listings, audit, notifier)
    attacher = MediaAttacher(
        media,
        store,
        listing_root=settings.listing_root_prefix,
        staging_root=settings.staging_root_prefix,
        call_timeout_s=settings.store_call_timeout_s,
    )
    uploader = MediaUploader(
        store,
        listing_root=settings.listing_root_prefix,
        staging_root=settings.staging_root_prefix,
        max_files=settings.max_upload_files,
        max_bytes=settings.max_upload_bytes,
        public_base=settings.public_media_base,
        call_timeout_s=settings.store_call_timeout_s,
    )
    reconciler = OrphanReconciler(
        store,
        media,
        sweeps,
        listing_root=settings.listing_root_prefix,
        page_size=settings.list_page_size,
        max_pages=settings.max_list_pages,
        delete_batch_size=settings.delete_batch_size,
        call_timeout_s=settings.store_call_timeout_s,
    )
    legacy = LegacyRootReconciler(
        store,
        listings,
        users,
        media,
        public_base=settings.public_media_base,
        listing_root=settings.listing_root_prefix,
        staging_root=settings.staging_root_prefix,
        page_size=settings.list_page_size,
        max_pages=settings.max_list_pages,
        delete_batch_size=settings.delete_batch_size,
        call_timeout_s=settings.store_call_timeout_s,
    )
    service = ListingService(db, listings, sweeps, machine, attacher, reconciler)
    return App(
        settings=settings,
        db=db,
        store=store,
        listings=listings,
        media=media,
        audit=audit,
        sweeps=sweeps,
        users=users,
        notifier=notifier,
        status_machine=machine,
        attacher=attacher,
        uploader=uploader,
        reconciler=reconciler,
        legacy_reconciler=legacy,
        service=service,
    )


@asynccontextmanager
async def open_app(settings: Settings | None = None) -> AsyncIterator[App]:
    """Open the database and blob store and yield the wired :class:`App`.

    Raises:
        ConfigError: Invalid blob store configuration.
    """
    if settings is None:
        settings = Settings()

    store = build_blob_store(settings)
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(store)
        db = await open_db(settings.database_path)
        stack.push_async_callback(db.close)
        logger.debug(
            "App ready (db=%s backend=%s bucket=%s)",
            settings.database_path,
            store.backend,
            settings.storage_bucket,
        )
        yield build_app(settings, db, store)
