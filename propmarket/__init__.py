"""Propmarket: property listing marketplace core.

Listing moderation with an audit trail and owner notifications, media
attachment, and reconciliation of the media bucket against the database.
"""

__version__ = "0.1.0"
