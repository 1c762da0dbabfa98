"""Listing operations and the moderation status machine."""

from propmarket.listings.service import ListingService
from propmarket.listings.status import ListingStatusMachine, parse_status

__all__ = [
    "ListingService",
    "ListingStatusMachine",
    "parse_status",
]
