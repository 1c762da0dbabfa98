"""Unit tests for :class:`~propmarket.media.reconciler.OrphanReconciler`.

Covers:
- The canonical scenario: two claimed files kept, one orphan deleted.
- Idempotence, unindexed folders, sub-folders left alone.
- Failure isolation: a failing delete chunk, a failing or slow list call.
- Partial acknowledgement, pagination and the page cap.
- The storage sweep queue and dry-run mode.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

import pytest

from propmarket.blobstore.base import BlobEntry
from propmarket.blobstore.local import LocalBlobStore
from propmarket.core.exceptions import BlobStoreError
from propmarket.core.models import Listing
from propmarket.core.run_context import RunContext
from propmarket.media.reconciler import (
    ListingReconcileResult,
    OrphanReconciler,
    ReconcileReport,
    chunked,
    list_prefix,
)
from propmarket.storage.database import Database
from propmarket.storage.repository import ListingRepository, MediaRepository, SweepRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


class _ScriptedStore(LocalBlobStore):
    """A filesystem bucket with injectable failures.

    Attributes:
        fail_list: Prefixes whose list call raises.
        slow_list: Prefixes whose list call never returns in time.
        fail_remove_containing: A remove call fails if it includes any of
            these keys.
        ack_cap: Maximum number of deletes acknowledged per call.
        remove_calls: Every batch passed to :meth:`remove`.
    """

    def __init__(self, base_dir: Path) -> None:
        super().__init__(base_dir)
        self.fail_list: set[str] = set()
        self.slow_list: set[str] = set()
        self.fail_remove_containing: set[str] = set()
        self.ack_cap: int | None = None
        self.remove_calls: list[list[str]] = []

    async def list(self, prefix: str, *, limit: int = 100, offset: int = 0) -> list[BlobEntry]:
        if prefix in self.fail_list:
            raise BlobStoreError("list", f"boom on {prefix}")
        if prefix in self.slow_list:
            await asyncio.sleep(5)
        return await super().list(prefix, limit=limit, offset=offset)

    async def remove(self, keys: Sequence[str]) -> int:
        self.remove_calls.append(list(keys))
        if self.fail_remove_containing & set(keys):
            raise BlobStoreError("remove", "chunk rejected")
        removed = await super().remove(keys)
        if self.ack_cap is not None:
            return min(removed, self.ack_cap)
        return removed


async def _put(store: LocalBlobStore, *keys: str) -> None:
    for key in keys:
        await store.upload(key, b"x", "image/jpeg")


async def _claim(db: Database, listing_id: str, *filenames: str) -> None:
    await ListingRepository(db).insert(
        Listing(id=listing_id, name=f"Listing {listing_id}", owner_id="u-1", price=1)
    )
    await MediaRepository(db).add(listing_id, filenames)


def _make_reconciler(db: Database, store: LocalBlobStore, **kwargs: object) -> OrphanReconciler:
    return OrphanReconciler(store, MediaRepository(db), SweepRepository(db), **kwargs)  # type: ignore[arg-type]


@pytest.fixture()
def store(tmp_path: Path) -> _ScriptedStore:
    return _ScriptedStore(tmp_path / "bucket")


# ===========================================================================
# Helpers
# ===========================================================================


class TestHelpers:
    def test_chunked(self) -> None:
        assert list(chunked(["a", "b", "c", "d", "e"], 2)) == [["a", "b"], ["c", "d"], ["e"]]
        assert list(chunked([], 3)) == []

    async def test_list_prefix_pages_until_short_page(self, store: _ScriptedStore) -> None:
        await _put(store, *(f"properties/P1/{i}.jpg" for i in range(5)))
        entries = await list_prefix(
            store, "properties/P1", page_size=2, max_pages=10, call_timeout_s=5
        )
        assert [e.name for e in entries] == [f"{i}.jpg" for i in range(5)]

    async def test_invalid_bounds_rejected(self, db: Database, store: _ScriptedStore) -> None:
        with pytest.raises(ValueError):
            _make_reconciler(db, store, page_size=0)


# ===========================================================================
# Core behaviour
# ===========================================================================


class TestReconcile:
    async def test_deletes_only_unclaimed_files(self, db: Database, store: _ScriptedStore) -> None:
        await _claim(db, "P1", "a.jpg", "b.jpg")
        await _put(store, "properties/P1/a.jpg", "properties/P1/b.jpg", "properties/P1/c.jpg")

        report = await _make_reconciler(db, store).run()

        assert report.to_payload()["deletedCount"] == 1
        assert store.exists("properties/P1/a.jpg")
        assert store.exists("properties/P1/b.jpg")
        assert not store.exists("properties/P1/c.jpg")
        assert report.listings[0].orphans == ["c.jpg"]
        assert report.failed_listings == []

    async def test_second_run_deletes_nothing(self, db: Database, store: _ScriptedStore) -> None:
        await _claim(db, "P1", "a.jpg")
        await _put(store, "properties/P1/a.jpg", "properties/P1/z.jpg")
        reconciler = _make_reconciler(db, store)

        first = await reconciler.run()
        second = await reconciler.run()

        assert first.deleted_count == 1
        assert second.deleted_count == 0
        assert second.orphan_count == 0
        assert store.exists("properties/P1/a.jpg")

    async def test_unindexed_folder_fully_orphaned(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _put(store, "properties/P7/x.jpg", "properties/P7/y.jpg")

        report = await _make_reconciler(db, store).run()

        assert report.deleted_count == 2
        assert [r.listing_id for r in report.listings] == ["P7"]

    async def test_listing_without_media_rows_loses_its_files(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _claim(db, "P1")
        await _put(store, "properties/P1/a.jpg")
        report = await _make_reconciler(db, store).run()
        assert report.deleted_count == 1

    async def test_subfolders_are_left_alone(self, db: Database, store: _ScriptedStore) -> None:
        await _claim(db, "P1", "a.jpg")
        await _put(store, "properties/P1/a.jpg", "properties/P1/thumbs/a.jpg")

        report = await _make_reconciler(db, store).run()

        assert report.deleted_count == 0
        assert store.exists("properties/P1/thumbs/a.jpg")

    async def test_claimed_file_without_blob_is_ignored(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _claim(db, "P1", "missing.jpg")
        report = await _make_reconciler(db, store).run()
        assert report.deleted_count == 0
        assert report.listings[0].files_found == 0

    async def test_files_outside_listing_root_untouched(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _put(store, "staging/T1/a.jpg", "avatars/u1.png")
        report = await _make_reconciler(db, store).run()
        assert report.deleted_count == 0
        assert store.exists("staging/T1/a.jpg")
        assert store.exists("avatars/u1.png")

    async def test_empty_bucket(self, db: Database, store: _ScriptedStore) -> None:
        report = await _make_reconciler(db, store).run()
        assert report.to_payload()["deletedCount"] == 0
        assert report.listings == []

    async def test_candidates_processed_in_sorted_order(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _claim(db, "P3", "a.jpg")
        await _put(store, "properties/P2/x.jpg", "properties/P1/x.jpg")
        report = await _make_reconciler(db, store).run()
        assert [r.listing_id for r in report.listings] == ["P1", "P2", "P3"]


# ===========================================================================
# Failure isolation
# ===========================================================================


class TestFailures:
    async def test_failed_chunk_is_skipped(self, db: Database, store: _ScriptedStore) -> None:
        await _put(
            store,
            "properties/P1/c.jpg",
            "properties/P1/d.jpg",
            "properties/P2/e.jpg",
        )
        store.fail_remove_containing = {"properties/P1/c.jpg"}

        report = await _make_reconciler(db, store, delete_batch_size=1).run()

        p1, p2 = report.listings
        assert p1.failed_chunks == 1
        assert p1.deleted == 1
        assert not p1.ok
        assert p2.deleted == 1
        assert report.deleted_count == 2
        assert report.failed_listings == ["P1"]
        assert store.exists("properties/P1/c.jpg")
        assert not store.exists("properties/P1/d.jpg")

    async def test_delete_batches_respect_chunk_size(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _put(store, *(f"properties/P1/{i}.jpg" for i in range(5)))
        await _make_reconciler(db, store, delete_batch_size=2).run()
        assert [len(call) for call in store.remove_calls] == [2, 2, 1]

    async def test_partial_acknowledgement_counted(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _put(store, "properties/P1/a.jpg", "properties/P1/b.jpg", "properties/P1/c.jpg")
        store.ack_cap = 2

        report = await _make_reconciler(db, store).run()

        assert report.deleted_count == 2
        assert report.listings[0].ok

    async def test_list_failure_skips_listing(self, db: Database, store: _ScriptedStore) -> None:
        await _put(store, "properties/P1/a.jpg", "properties/P2/b.jpg")
        store.fail_list = {"properties/P1"}

        report = await _make_reconciler(db, store).run()

        p1, p2 = report.listings
        assert p1.error is not None and "boom" in p1.error
        assert p1.deleted == 0
        assert p2.deleted == 1
        assert store.exists("properties/P1/a.jpg")

    async def test_slow_list_times_out(self, db: Database, store: _ScriptedStore) -> None:
        await _put(store, "properties/P1/a.jpg", "properties/P2/b.jpg")
        store.slow_list = {"properties/P1"}

        report = await _make_reconciler(db, store, call_timeout_s=0.05).run()

        assert report.listings[0].error == "TimeoutError"
        assert report.listings[1].deleted == 1

    async def test_root_list_failure_falls_back_to_index(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        await _claim(db, "P1", "a.jpg")
        await _put(store, "properties/P1/a.jpg", "properties/P1/b.jpg", "properties/P9/z.jpg")
        store.fail_list = {"properties"}

        report = await _make_reconciler(db, store).run()

        assert [r.listing_id for r in report.listings] == ["P1"]
        assert report.deleted_count == 1
        assert store.exists("properties/P9/z.jpg")


# ===========================================================================
# Pagination
# ===========================================================================


class TestPagination:
    async def test_all_pages_scanned(self, db: Database, store: _ScriptedStore) -> None:
        await _claim(db, "P1", "0.jpg")
        await _put(store, *(f"properties/P1/{i}.jpg" for i in range(7)))

        report = await _make_reconciler(db, store, page_size=2).run()

        assert report.listings[0].files_found == 7
        assert report.deleted_count == 6

    async def test_page_cap_bounds_the_scan(
        self, db: Database, store: _ScriptedStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        await _claim(db, "P1")
        await _put(store, *(f"properties/P1/{i}.jpg" for i in range(5)))

        with caplog.at_level(logging.WARNING, logger="propmarket.media.reconciler"):
            report = await _make_reconciler(db, store, page_size=2, max_pages=1).run()

        assert report.listings[0].files_found == 2
        assert report.deleted_count == 2
        assert any("Stopped listing" in r.getMessage() for r in caplog.records)


# ===========================================================================
# Sweep queue and run modes
# ===========================================================================


class TestSweepsAndModes:
    async def test_queued_listing_swept_and_drained(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        sweeps = SweepRepository(db)
        await sweeps.enqueue("P9")
        await _put(store, "properties/P9/a.jpg")

        report = await _make_reconciler(db, store).run()

        assert report.swept == ["P9"]
        assert report.deleted_count == 1
        assert await sweeps.queued_ids() == []

    async def test_queued_listing_with_empty_prefix_drained(
        self, db: Database, store: _ScriptedStore
    ) -> None:
        sweeps = SweepRepository(db)
        await sweeps.enqueue("P9")
        report = await _make_reconciler(db, store).run()
        assert report.swept == ["P9"]
        assert await sweeps.queued_ids() == []

    async def test_failed_sweep_stays_queued(self, db: Database, store: _ScriptedStore) -> None:
        sweeps = SweepRepository(db)
        await sweeps.enqueue("P9")
        await _put(store, "properties/P9/a.jpg")
        store.fail_remove_containing = {"properties/P9/a.jpg"}

        report = await _make_reconciler(db, store).run()

        assert report.swept == []
        assert await sweeps.queued_ids() == ["P9"]

    async def test_dry_run_deletes_nothing(self, db: Database, store: _ScriptedStore) -> None:
        sweeps = SweepRepository(db)
        await sweeps.enqueue("P9")
        await _put(store, "properties/P9/a.jpg", "properties/P1/b.jpg")

        report = await _make_reconciler(db, store).run(RunContext(dry_run=True))

        assert report.dry_run is True
        assert report.orphan_count == 2
        assert report.deleted_count == 0
        assert store.remove_calls == []
        assert store.exists("properties/P9/a.jpg")
        assert await sweeps.queued_ids() == ["P9"]
        assert report.to_payload()["dryRun"] is True

    async def test_reconcile_listing(self, db: Database, store: _ScriptedStore) -> None:
        await _claim(db, "P1", "a.jpg")
        await _put(store, "properties/P1/a.jpg", "properties/P1/b.jpg", "properties/P2/c.jpg")

        result = await _make_reconciler(db, store).reconcile_listing("P1")

        assert result.deleted == 1
        assert result.orphans == ["b.jpg"]
        assert store.exists("properties/P2/c.jpg")


# ===========================================================================
# Report
# ===========================================================================


class TestReport:
    def test_payload_shape(self) -> None:
        report = ReconcileReport(
            listings=[
                ListingReconcileResult("P1", files_found=3, orphans=["c.jpg"], deleted=1),
                ListingReconcileResult("P2", files_found=1),
                ListingReconcileResult("P3", error="boom"),
            ],
            swept=["P2"],
        )
        payload = report.to_payload()
        assert payload["deletedCount"] == 1
        assert payload["scannedListings"] == 3
        assert payload["orphanCount"] == 1
        assert payload["failedListings"] == ["P3"]
        assert payload["sweptListings"] == ["P2"]
        assert [item["listingId"] for item in payload["listings"]] == ["P1", "P3"]

    def test_summary(self) -> None:
        summary = ReconcileReport(dry_run=True).format_summary()
        assert "dry-run" in summary
        assert "deleted=0" in summary
