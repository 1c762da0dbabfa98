"""Shared pytest fixtures and configuration for the Propmarket test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from pydantic_settings import SettingsConfigDict

from propmarket.blobstore.local import LocalBlobStore
from propmarket.core import configure_logging
from propmarket.core.settings import Settings
from propmarket.storage.database import Database, open_memory_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    The ``autouse=True`` flag means this fixture runs for every test without
    needing to be requested explicitly.  Using ``force=True`` ensures the
    configuration is applied even when pytest's own ``log_cli`` handler is
    already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all Propmarket and sensitive env vars for the duration of a test.

    Useful when testing settings loading to ensure a clean environment
    without real credentials bleeding in from the developer's shell.

    Also disables pydantic-settings `.env` file loading so that credentials
    present in a local `.env` file do not leak into Settings isolation tests.
    """
    sensitive_prefixes = (
        "SUPABASE_",
        "STORAGE_",
        "LOCAL_STORAGE_",
        "MEDIA_BASE_",
        "DATABASE_",
        "LISTING_ROOT_",
        "STAGING_ROOT_",
        "LIST_PAGE_",
        "MAX_",
        "DELETE_BATCH_",
        "STORE_CALL_",
        "HTTP_MAX_",
        "HTTP_REQUEST_",
        "NOTIFICATION_LINK_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in sensitive_prefixes):
            monkeypatch.delenv(key, raising=False)

    # Prevent pydantic-settings from reading the on-disk .env file.
    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture()
async def db() -> AsyncIterator[Database]:
    """A private in-memory database with the full schema applied."""
    database = await open_memory_db()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture()
def bucket(tmp_path: Path) -> LocalBlobStore:
    """An empty filesystem bucket under the test's temporary directory."""
    return LocalBlobStore(tmp_path / "bucket")


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test.

    The logger name is ``tests.<test-module>`` so log lines are clearly
    attributed to test code rather than production code under test.
    """
    return logging.getLogger("tests")
