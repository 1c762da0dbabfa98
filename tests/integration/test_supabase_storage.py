"""Integration tests: Supabase Storage with a real project.

These tests exercise :class:`~propmarket.blobstore.supabase.SupabaseBlobStore`
and the :class:`~propmarket.media.reconciler.OrphanReconciler` against the
live Storage REST API.

Default behaviour
-----------------
All tests in this module are marked ``@pytest.mark.integration`` and are
**excluded from the default test run** (``addopts = "-m 'not integration'"``
in ``pyproject.toml``).

Run on demand::

    pytest -m integration

Credentials
-----------
Tests are skipped unless ``SUPABASE_URL`` and ``SUPABASE_SERVICE_ROLE_KEY``
are present in the environment (or in a ``.env`` file in the project root).
``STORAGE_BUCKET`` selects the bucket (default ``media``).  Every object is
written under a random ``propmarket-it-<hex>`` listing id and removed again.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import AsyncIterator

import pytest
from dotenv import load_dotenv

from propmarket.blobstore.supabase import SupabaseBlobStore
from propmarket.core.models import Listing
from propmarket.media.reconciler import OrphanReconciler, list_prefix
from propmarket.storage.database import Database
from propmarket.storage.repository import ListingRepository, MediaRepository, SweepRepository

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_SUPABASE_CONFIGURED: bool = bool(
    os.environ.get("SUPABASE_URL") and os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
)

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not _SUPABASE_CONFIGURED,
        reason=(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set to run Supabase "
            "integration tests. Add them to .env or export them in your shell."
        ),
    ),
]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
async def store() -> AsyncIterator[SupabaseBlobStore]:
    async with SupabaseBlobStore(
        url=os.environ["SUPABASE_URL"],
        service_key=os.environ["SUPABASE_SERVICE_ROLE_KEY"],
        bucket=os.environ.get("STORAGE_BUCKET", "media"),
    ) as client:
        yield client


@pytest.fixture()
async def listing_id(store: SupabaseBlobStore) -> AsyncIterator[str]:
    """A throwaway listing id whose prefix is emptied after the test."""
    value = f"propmarket-it-{uuid.uuid4().hex[:12]}"
    yield value
    leftovers = await list_prefix(
        store, f"properties/{value}", page_size=100, max_pages=10, call_timeout_s=30.0
    )
    await store.remove([f"properties/{value}/{e.name}" for e in leftovers if e.is_file])


# ===========================================================================
# Tests
# ===========================================================================


class TestSupabaseStorage:
    async def test_upload_list_move_remove(
        self, store: SupabaseBlobStore, listing_id: str
    ) -> None:
        prefix = f"properties/{listing_id}"
        await store.upload(f"{prefix}/a.jpg", b"jpeg", "image/jpeg")
        await store.move(f"{prefix}/a.jpg", f"{prefix}/b.jpg")

        names = [entry.name for entry in await store.list(prefix)]
        assert names == ["b.jpg"]

        assert await store.remove([f"{prefix}/b.jpg"]) == 1
        assert await store.list(prefix) == []

    async def test_reconciler_deletes_only_orphans(
        self, store: SupabaseBlobStore, listing_id: str, db: Database
    ) -> None:
        prefix = f"properties/{listing_id}"
        await ListingRepository(db).insert(
            Listing(id=listing_id, name="Integration", owner_id="it", price=1)
        )
        await MediaRepository(db).add(listing_id, ["keep.jpg"])
        await store.upload(f"{prefix}/keep.jpg", b"k", "image/jpeg")
        await store.upload(f"{prefix}/orphan.jpg", b"o", "image/jpeg")

        reconciler = OrphanReconciler(store, MediaRepository(db), SweepRepository(db))
        result = await reconciler.reconcile_listing(listing_id)

        assert result.orphans == ["orphan.jpg"]
        assert result.deleted == 1
        assert [e.name for e in await store.list(prefix)] == ["keep.jpg"]
