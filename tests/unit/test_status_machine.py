"""Unit tests for the listing moderation status machine.

Covers:
- :func:`~propmarket.listings.status.parse_status` validation.
- :class:`~propmarket.listings.status.ListingStatusMachine` transitions:
  audit rows, owner notifications, no-op transitions, unknown ids, the
  all-or-nothing rollback when a write fails, and concurrent transitions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import pytest

from propmarket.core.exceptions import (
    AuditWriteError,
    InvalidRequestError,
    NotFoundError,
    NotificationWriteError,
)
from propmarket.core.models import Listing, PostingStatus
from propmarket.listings.status import ListingStatusMachine, parse_status
from propmarket.notifiers.notifier import Notifier
from propmarket.storage.database import Database
from propmarket.storage.repository import (
    AuditRepository,
    ListingRepository,
    MediaRepository,
    NotificationRepository,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


def _make_listing(
    *,
    id: str = "P1",
    status: PostingStatus = PostingStatus.PENDING,
) -> Listing:
    return Listing(
        id=id,
        name="Rumah Minimalis Cibubur",
        owner_id="owner-7",
        price=850_000_000,
        posting_status=status,
        posted_at=datetime(2026, 2, 28, tzinfo=UTC),
    )


def _make_machine(db: Database) -> ListingStatusMachine:
    return ListingStatusMachine(
        db,
        ListingRepository(db),
        AuditRepository(db),
        Notifier(NotificationRepository(db)),
    )


async def _seed(db: Database, listing: Listing | None = None) -> Listing:
    listing = listing or _make_listing()
    await ListingRepository(db).insert(listing)
    return listing


async def _count(db: Database, table: str) -> int:
    row = await db.fetchone(f"SELECT COUNT(*) FROM {table}")
    assert row is not None
    return int(row[0])


# ===========================================================================
# parse_status
# ===========================================================================


class TestParseStatus:
    """Tests for :func:`~propmarket.listings.status.parse_status`."""

    @pytest.mark.parametrize("value", ["pending", "approved", "rejected"])
    def test_valid_values(self, value: str) -> None:
        assert parse_status(value) is PostingStatus(value)

    def test_missing(self) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_status(None)
        assert exc_info.value.details == [{"field": "newStatus", "issue": "missing"}]

    @pytest.mark.parametrize("value", ["Approved", "APPROVED", " approved", "archived", ""])
    def test_matching_is_exact(self, value: str) -> None:
        with pytest.raises(InvalidRequestError, match="Invalid status"):
            parse_status(value)

    def test_non_string(self) -> None:
        with pytest.raises(InvalidRequestError, match="must be a string"):
            parse_status(1)

    def test_field_name_in_details(self) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_status("nope", field="status")
        assert exc_info.value.details[0]["field"] == "status"


# ===========================================================================
# Transitions
# ===========================================================================


class TestTransition:
    """Tests for :meth:`ListingStatusMachine.transition`."""

    async def test_pending_to_approved(self, db: Database) -> None:
        await _seed(db)
        await MediaRepository(db).add("P1", ["a.jpg", "b.jpg"])
        machine = _make_machine(db)

        updated = await machine.transition("P1", "approved", note="looks good", actor_id="admin-1")

        assert updated.posting_status is PostingStatus.APPROVED
        assert updated.media == ["a.jpg", "b.jpg"]

        history = await AuditRepository(db).for_listing("P1")
        assert len(history) == 1
        assert history[0].previous_status is PostingStatus.PENDING
        assert history[0].new_status is PostingStatus.APPROVED
        assert history[0].changed_by == "admin-1"
        assert history[0].note == "looks good"

        inbox = await NotificationRepository(db).for_user("owner-7")
        assert len(inbox) == 1
        assert inbox[0].text == "Your property 'Rumah Minimalis Cibubur' has been approved by admin."
        assert inbox[0].link == "/user/propertiaktif"
        assert inbox[0].is_read is False

    async def test_rejected_uses_rejected_link(self, db: Database) -> None:
        await _seed(db)
        await _make_machine(db).transition("P1", "rejected")
        inbox = await NotificationRepository(db).for_user("owner-7")
        assert inbox[0].link == "/user/propertiditolak"
        assert "has been rejected by admin" in inbox[0].text

    async def test_explicit_link_wins(self, db: Database) -> None:
        await _seed(db)
        await _make_machine(db).transition("P1", "approved", notification_link="/custom")
        inbox = await NotificationRepository(db).for_user("owner-7")
        assert inbox[0].link == "/custom"

    async def test_back_to_pending_audits_without_notification(self, db: Database) -> None:
        await _seed(db, _make_listing(status=PostingStatus.APPROVED))
        updated = await _make_machine(db).transition("P1", "pending")
        assert updated.posting_status is PostingStatus.PENDING
        assert await _count(db, "status_changes") == 1
        assert await _count(db, "notifications") == 0

    async def test_same_status_is_a_no_op(self, db: Database) -> None:
        await _seed(db, _make_listing(status=PostingStatus.APPROVED))
        updated = await _make_machine(db).transition("P1", "approved")
        assert updated.posting_status is PostingStatus.APPROVED
        assert await _count(db, "status_changes") == 0
        assert await _count(db, "notifications") == 0

    async def test_unknown_listing(self, db: Database) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await _make_machine(db).transition("ghost", "approved")
        assert exc_info.value.http_status == 404
        assert await _count(db, "status_changes") == 0
        assert await _count(db, "notifications") == 0

    async def test_unknown_listing_checked_before_status(self, db: Database) -> None:
        with pytest.raises(NotFoundError):
            await _make_machine(db).transition("ghost", "bogus")

    async def test_invalid_status_writes_nothing(self, db: Database) -> None:
        await _seed(db)
        with pytest.raises(InvalidRequestError):
            await _make_machine(db).transition("P1", "Approved")
        listing = await ListingRepository(db).get("P1")
        assert listing is not None
        assert listing.posting_status is PostingStatus.PENDING
        assert await _count(db, "status_changes") == 0

    async def test_every_status_reachable_from_every_status(self, db: Database) -> None:
        await _seed(db)
        machine = _make_machine(db)
        path = ["approved", "rejected", "pending", "rejected", "approved", "pending"]
        for status in path:
            updated = await machine.transition("P1", status)
            assert updated.posting_status == status
        assert await _count(db, "status_changes") == len(path)


# ===========================================================================
# Atomicity
# ===========================================================================


class TestAtomicity:
    """A failed write rolls back the audit row, the update and the notification."""

    async def test_notification_failure_rolls_back_everything(self, db: Database) -> None:
        await _seed(db)
        await db.execute("DROP TABLE notifications")

        with pytest.raises(NotificationWriteError):
            await _make_machine(db).transition("P1", "approved")

        listing = await ListingRepository(db).get("P1")
        assert listing is not None
        assert listing.posting_status is PostingStatus.PENDING
        assert await _count(db, "status_changes") == 0

    async def test_audit_failure_leaves_status_unchanged(self, db: Database) -> None:
        await _seed(db)
        await db.execute("DROP TABLE status_changes")

        with pytest.raises(AuditWriteError):
            await _make_machine(db).transition("P1", "rejected")

        listing = await ListingRepository(db).get("P1")
        assert listing is not None
        assert listing.posting_status is PostingStatus.PENDING
        assert await _count(db, "notifications") == 0

    async def test_apply_with_fields_updates_in_one_statement(self, db: Database) -> None:
        current = await _seed(db)
        updated = await _make_machine(db).apply(
            current,
            PostingStatus.APPROVED,
            fields={"name": "Rumah Baru", "price": 900_000_000.0},
        )
        assert updated.name == "Rumah Baru"
        assert updated.price == 900_000_000.0
        assert updated.posting_status is PostingStatus.APPROVED

        inbox = await NotificationRepository(db).for_user("owner-7")
        assert inbox[0].text == "Your property 'Rumah Baru' has been approved by admin."


# ===========================================================================
# Concurrency
# ===========================================================================


class TestConcurrentTransitions:
    async def test_concurrent_transitions_both_audited(self, db: Database) -> None:
        """Two racing admins: both changes are audited and the last commit wins."""
        await _seed(db)
        machine = _make_machine(db)

        first, second = await asyncio.gather(
            machine.transition("P1", "approved", actor_id="admin-a"),
            machine.transition("P1", "rejected", actor_id="admin-b"),
        )

        history = await AuditRepository(db).for_listing("P1")
        assert len(history) == 2
        assert history[0].previous_status is PostingStatus.PENDING
        assert {c.new_status for c in history} == {PostingStatus.APPROVED, PostingStatus.REJECTED}

        final = await ListingRepository(db).get("P1")
        assert final is not None
        assert final.posting_status is history[-1].new_status
        assert await _count(db, "notifications") == 2
