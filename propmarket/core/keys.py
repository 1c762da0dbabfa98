"""Blob store key layout for listing media.

This module defines the **key contract** shared by the uploader, the media
attacher and the reconciler:

Permanent keys
--------------
Every object a listing owns lives under ``<listing_root>/<listing_id>/`` and
its Media row stores the bare filename.  The full key is always derived, never
stored independently of the two parts::

    properties/P1/a.jpg   ←  Media(listing_id="P1", filename="a.jpg")

Staging keys
------------
Uploads made before the listing id exists go to
``<staging_root>/<temp_id>/<filename>`` (``temp_id`` defaults to ``"anon"``)
and are moved to the permanent key once the listing is created.  The
reconciler never scans the staging root.

+-----------+-----------------------------------+------------------------------+
| Kind      | Key                               | Example                      |
+===========+===================================+==============================+
| Permanent | ``media_key(id, filename)``       | ``properties/P1/a.jpg``      |
+-----------+-----------------------------------+------------------------------+
| Staging   | ``staging_key(temp, filename)``   | ``staging/T1/a.jpg``         |
+-----------+-----------------------------------+------------------------------+
"""

from __future__ import annotations

import logging
import re

__all__ = [
    "DEFAULT_LISTING_ROOT",
    "DEFAULT_STAGING_ROOT",
    "ANONYMOUS_STAGING_ID",
    "KEY_SEPARATOR",
    "join_key",
    "listing_prefix",
    "media_key",
    "staging_prefix",
    "staging_key",
    "sanitize_filename",
]

logger = logging.getLogger(__name__)

DEFAULT_LISTING_ROOT: str = "properties"
DEFAULT_STAGING_ROOT: str = "staging"

#: Staging folder used when an upload carries neither a listing id nor a temp id.
ANONYMOUS_STAGING_ID: str = "anon"

KEY_SEPARATOR: str = "/"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def join_key(*parts: str) -> str:
    """Join key segments with ``/``, dropping empty segments and stray slashes.

    Example::

        assert join_key("properties/", "/P1", "a.jpg") == "properties/P1/a.jpg"
    """
    cleaned = (str(p).strip(KEY_SEPARATOR) for p in parts)
    return KEY_SEPARATOR.join(p for p in cleaned if p)


def listing_prefix(listing_id: str, root: str = DEFAULT_LISTING_ROOT) -> str:
    """Return the folder key that holds every object of *listing_id*."""
    return join_key(root, listing_id)


def media_key(listing_id: str, filename: str, root: str = DEFAULT_LISTING_ROOT) -> str:
    """Return the permanent key of *filename* owned by *listing_id*."""
    return join_key(root, listing_id, filename)


def staging_prefix(temp_id: str | None, root: str = DEFAULT_STAGING_ROOT) -> str:
    """Return the staging folder for *temp_id* (``anon`` when blank)."""
    return join_key(root, (temp_id or "").strip() or ANONYMOUS_STAGING_ID)


def staging_key(temp_id: str | None, filename: str, root: str = DEFAULT_STAGING_ROOT) -> str:
    """Return the staging key of *filename* uploaded under *temp_id*."""
    return join_key(staging_prefix(temp_id, root), filename)


def sanitize_filename(name: str) -> str:
    """Reduce an uploaded filename to ``[A-Za-z0-9._-]``.

    Directory components are dropped first so a client cannot address
    another listing's folder.  Returns an empty string when nothing usable
    remains.

    Example::

        assert sanitize_filename("../x/My Photo (1).jpg") == "My_Photo__1_.jpg"
    """
    base = str(name).replace("\\", KEY_SEPARATOR).rsplit(KEY_SEPARATOR, 1)[-1]
    safe = _UNSAFE_FILENAME_CHARS.sub("_", base)
    if safe.strip(".") == "":
        return ""
    return safe
