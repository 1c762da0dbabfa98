"""Bidirectional converters between database rows, API payloads and models.

Every entity crosses three shapes:

* **row** — a ``sqlite3.Row``/mapping with snake_case column names, ISO-8601
  text timestamps and ``0``/``1`` booleans;
* **model** — the pydantic model in :mod:`propmarket.core.models`;
* **payload** — the camelCase JSON the web layer speaks (``ownerId``,
  ``postingStatus``).  Legacy Indonesian field names written by older clients
  (``namaProperti``, ``statusPostingan``, ...) are accepted on the way in.

This module is the only place that knows about those shapes.  The repository,
the status machine and the media attacher all go through it, so they cannot
disagree on field names or defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from propmarket.core.exceptions import InvalidRequestError
from propmarket.core.models import (
    Listing,
    Media,
    Notification,
    StatusChange,
    User,
)

__all__ = [
    "LISTING_COLUMNS",
    "LEGACY_LISTING_KEYS",
    "listing_from_row",
    "listing_to_row",
    "listing_from_payload",
    "listing_to_payload",
    "listing_changes_from_payload",
    "media_from_row",
    "media_to_row",
    "status_change_from_row",
    "status_change_to_row",
    "notification_from_row",
    "notification_to_row",
    "notification_to_payload",
    "user_from_row",
]

logger = logging.getLogger(__name__)

#: Columns of the ``listings`` table, in DDL order.  ``media`` is joined.
LISTING_COLUMNS: tuple[str, ...] = tuple(
    name for name in Listing.model_fields if name != "media"
)

#: Field names used by the first version of the dashboard.
LEGACY_LISTING_KEYS: dict[str, str] = {
    "namaProperti": "name",
    "tipeProperti": "property_type",
    "jenisProperti": "listing_type",
    "harga": "price",
    "periodeAngka": "period_value",
    "periodeSatuan": "period_unit",
    "luasTanah": "land_area",
    "luasBangunan": "building_area",
    "kamarTidur": "bedrooms",
    "kamarMandi": "bathrooms",
    "statusPostingan": "posting_status",
}

_LISTING_FIELDS: frozenset[str] = frozenset(Listing.model_fields)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    """Flatten a pydantic error into ``{"field", "issue"}`` entries."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "(root)",
            "issue": err["msg"],
        }
        for err in exc.errors()
    ]


def _canonical_field(key: str) -> str:
    """Map a payload key (camel, snake or legacy) to a model field name."""
    if key in LEGACY_LISTING_KEYS:
        return LEGACY_LISTING_KEYS[key]
    return to_snake(key)


def _normalise_listing_keys(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Rename every key of *payload* to its snake_case field name.

    Raises:
        InvalidRequestError: If a key does not name a listing field.
    """
    out: dict[str, Any] = {}
    unknown: list[dict[str, Any]] = []
    for key, value in payload.items():
        field = _canonical_field(str(key))
        if field not in _LISTING_FIELDS:
            unknown.append({"field": str(key), "issue": "unknown field"})
            continue
        out[field] = value
    if unknown:
        raise InvalidRequestError("Unknown listing fields", details=unknown)
    return out


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def listing_from_row(row: Mapping[str, Any], media: Iterable[str] = ()) -> Listing:
    """Build a :class:`Listing` from a ``listings`` row plus its filenames."""
    data = {column: row[column] for column in LISTING_COLUMNS}
    data["media"] = list(media)
    return Listing.model_validate(data)


def listing_to_row(listing: Listing) -> dict[str, Any]:
    """Return the column values of *listing* ready for an INSERT/UPDATE."""
    data = listing.model_dump(mode="json", exclude={"media"})
    return {column: data[column] for column in LISTING_COLUMNS}


def listing_from_payload(payload: Mapping[str, Any]) -> Listing:
    """Validate a client submission into a :class:`Listing`.

    Accepts camelCase, snake_case and legacy keys in any mix.

    Raises:
        InvalidRequestError: With field-level ``details`` when validation
            fails or an unknown key is present.
    """
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Listing payload must be an object")
    data = _normalise_listing_keys(payload)
    try:
        return Listing.model_validate(data)
    except ValidationError as exc:
        raise InvalidRequestError(
            "Validation failed", details=_validation_details(exc)
        ) from exc


def listing_to_payload(listing: Listing) -> dict[str, Any]:
    """Serialise *listing* to the camelCase JSON shape."""
    return listing.model_dump(mode="json", by_alias=True)


def listing_changes_from_payload(
    current: Listing, changes: Mapping[str, Any]
) -> tuple[Listing, dict[str, Any]]:
    """Apply a partial update payload to *current* and validate the result.

    ``id`` is ignored (ids are immutable).  ``media`` is returned untouched in
    the change dict; the caller routes it to the media attacher.

    Returns:
        ``(merged, fields)`` where *merged* is the validated listing after the
        update and *fields* the snake_case names/values that were supplied.

    Raises:
        InvalidRequestError: On unknown keys or values that fail validation.
    """
    if not isinstance(changes, Mapping):
        raise InvalidRequestError("Update payload must be an object")
    fields = _normalise_listing_keys(changes)
    fields.pop("id", None)
    merged_data = current.model_dump()
    merged_data.update(fields)
    try:
        merged = Listing.model_validate(merged_data)
    except ValidationError as exc:
        raise InvalidRequestError(
            "Validation failed", details=_validation_details(exc)
        ) from exc
    return merged, fields


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


def media_from_row(row: Mapping[str, Any]) -> Media:
    return Media.model_validate(
        {
            "listing_id": row["listing_id"],
            "filename": row["filename"],
            "storage_key": row["storage_key"],
            "created_at": row["created_at"],
        }
    )


def media_to_row(media: Media) -> dict[str, Any]:
    return media.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------


def status_change_from_row(row: Mapping[str, Any]) -> StatusChange:
    return StatusChange.model_validate(dict(row))


def status_change_to_row(change: StatusChange) -> dict[str, Any]:
    """Column values for INSERT; the autoincrement ``id`` is left out."""
    return change.model_dump(mode="json", exclude={"id"})


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notification_from_row(row: Mapping[str, Any]) -> Notification:
    return Notification.model_validate(dict(row))


def notification_to_row(notification: Notification) -> dict[str, Any]:
    data = notification.model_dump(mode="json", exclude={"id"})
    data["is_read"] = int(notification.is_read)
    return data


def notification_to_payload(notification: Notification) -> dict[str, Any]:
    return notification.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def user_from_row(row: Mapping[str, Any]) -> User:
    data = dict(row)
    return User.model_validate(
        {
            "id": str(data["id"]),
            "username": data.get("username") or "",
            "email": data.get("email"),
            "profile_image": data.get("profile_image"),
        }
    )
