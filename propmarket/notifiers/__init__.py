"""Owner notifications for listing moderation decisions."""

from propmarket.notifiers.formatter import (
    DEFAULT_STATUS_LINKS,
    format_status_message,
    resolve_status_link,
)
from propmarket.notifiers.notifier import Notifier

__all__ = [
    "DEFAULT_STATUS_LINKS",
    "Notifier",
    "format_status_message",
    "resolve_status_link",
]
