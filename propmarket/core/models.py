"""Propmarket core domain models.

This module defines the entities shared by the storage, media and listing
layers: :class:`Listing`, its :class:`Media` claims, the immutable
:class:`StatusChange` audit record, owner :class:`Notification` rows and the
minimal :class:`User` view read by the legacy reference scan.

Field names are snake_case and match the database columns one-to-one.  Each
model also accepts and emits camelCase (``ownerId``, ``postingStatus``) via a
pydantic alias generator; :mod:`propmarket.core.converters` is the single
place where rows and payloads are turned into models and back.

Typical usage::

    from propmarket.core.models import Listing, PostingStatus

    listing = Listing(
        id="P1",
        name="Rumah Minimalis Cibubur",
        owner_id="u-42",
        price=850_000_000,
    )
    assert listing.posting_status is PostingStatus.PENDING
"""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "PostingStatus",
    "Listing",
    "Media",
    "StatusChange",
    "Notification",
    "User",
]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# Listing ids become one segment of every media key (``properties/<id>/...``).
_KEY_SAFE_ID = re.compile(r"[A-Za-z0-9._-]+")

_MODEL_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PostingStatus(StrEnum):
    """Moderation state of a listing.

    There is no terminal state: moderation is reversible, so every value may
    move to every other value.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def notifies_owner(self) -> bool:
        """``True`` for the states that produce an owner notification."""
        return self in (PostingStatus.APPROVED, PostingStatus.REJECTED)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class Listing(BaseModel):
    """A property listing with its materialised media list.

    ``media`` is not a column of ``listings``; it is joined from
    ``listing_media`` by the repository and holds bare filenames in insertion
    order.

    Attributes:
        id: Caller-supplied short identifier made of ``[A-Za-z0-9._-]``
            (not ``.`` or ``..``).
        name: Listing headline.
        owner_id: Id of the user who submitted the listing.
        price: Asking price or rent (finite, non-negative).
        property_type: House, apartment, land, ...  ``None`` if unset.
        listing_type: Sale or rent.  ``None`` if unset.
        period_value: Rent period length (e.g. ``1``).  ``None`` for sales.
        period_unit: Rent period unit (e.g. ``"bulan"``).  ``None`` for sales.
        land_area: Land area in m².
        building_area: Building area in m².
        bedrooms: Bedroom count.
        bathrooms: Bathroom count.
        description: Free text; defaults to an empty string.
        address: Street address or area label.
        latitude: WGS84 latitude.
        longitude: WGS84 longitude.
        posting_status: Moderation state; new listings start ``pending``.
        posted_at: Submission timestamp.
        media: Filenames claimed by this listing.
    """

    model_config = _MODEL_CONFIG

    id: str = Field(..., min_length=1, description="Listing identifier.")
    name: str = Field(..., min_length=1, description="Listing headline.")
    owner_id: str = Field(..., min_length=1, description="Owning user id.")
    price: float = Field(..., ge=0, description="Price (finite, non-negative).")
    property_type: str | None = None
    listing_type: str | None = None
    period_value: int | None = Field(None, ge=0)
    period_unit: str | None = None
    land_area: float | None = Field(None, ge=0)
    building_area: float | None = Field(None, ge=0)
    bedrooms: int | None = Field(None, ge=0)
    bathrooms: int | None = Field(None, ge=0)
    description: str = ""
    address: str | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    posting_status: PostingStatus = PostingStatus.PENDING
    posted_at: datetime = Field(default_factory=_utcnow)
    media: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("id", "name", "owner_id", mode="before")
    @classmethod
    def _strip_required(cls, v: object) -> object:
        """Strip required strings so whitespace-only values fail min_length."""
        if isinstance(v, str):
            return v.strip()
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("id")
    @classmethod
    def _id_is_key_safe(cls, v: str) -> str:
        """Keep the id usable as a single storage key segment."""
        if not _KEY_SAFE_ID.fullmatch(v) or v in (".", ".."):
            raise ValueError("id may only contain letters, digits, '.', '_' and '-'")
        return v

    @field_validator("price")
    @classmethod
    def _price_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("price must be a finite number")
        return v

    @field_validator(
        "property_type", "listing_type", "period_unit", "address", mode="before"
    )
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        """Coerce blank optional strings to None."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, v: object) -> object:
        return "" if v is None else v


# ---------------------------------------------------------------------------
# Media claim
# ---------------------------------------------------------------------------


class Media(BaseModel):
    """A claim that a blob store object belongs to a listing.

    Attributes:
        listing_id: Owning listing.
        filename: Bare object name inside the listing folder.
        storage_key: ``<listing_root>/<listing_id>/<filename>``.
        created_at: When the claim was recorded.
    """

    model_config = _MODEL_CONFIG

    listing_id: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)
    storage_key: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class StatusChange(BaseModel):
    """Immutable audit record of one accepted status change.

    Attributes:
        id: Database row id; ``None`` before insertion.
        listing_id: Listing whose status changed.
        changed_by: Actor id, or ``None`` for system/anonymous changes.
        previous_status: Status read before the change was applied.
        new_status: Status written by the change.
        note: Optional moderator note.
        changed_at: Audit timestamp.
    """

    model_config = _MODEL_CONFIG

    id: int | None = None
    listing_id: str
    changed_by: str | None = None
    previous_status: PostingStatus
    new_status: PostingStatus
    note: str | None = None
    changed_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class Notification(BaseModel):
    """An owner-facing notification row."""

    model_config = _MODEL_CONFIG

    id: int | None = None
    user_id: str
    text: str
    is_read: bool = False
    link: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


class User(BaseModel):
    """The subset of a user row that can reference bucket objects."""

    model_config = _MODEL_CONFIG

    id: str
    username: str = ""
    email: str | None = None
    profile_image: str | None = None
