"""Propmarket application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every environment variable documented in ``.env.example`` maps 1-to-1 to a
field in :class:`Settings`.  The field name is the **lowercase** version of
the env-var name (e.g. ``SUPABASE_URL`` → ``supabase_url``).

Typical usage::

    from propmarket.core.settings import Settings

    settings = Settings()                   # loads from env + .env
    print(settings.supabase_configured)     # True / False
    print(settings.public_media_base)       # ".../storage/v1/object/public/media/"
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    The defaults describe a self-contained local setup: a SQLite file and a
    filesystem bucket under ``data/``.  Pointing the service at Supabase
    Storage only requires ``STORAGE_BACKEND=supabase`` plus the URL and
    service-role key.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Relational store
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/propmarket.db",
        description="Path to the SQLite database file.",
    )

    # ------------------------------------------------------------------
    # Blob store
    # ------------------------------------------------------------------
    storage_backend: str = Field(
        default="local",
        description="Blob store backend: 'local' or 'supabase'.",
    )
    local_storage_dir: str = Field(
        default="data/bucket",
        description="Root directory of the filesystem bucket (local backend).",
    )
    supabase_url: str = Field(default="", description="Supabase project URL.")
    supabase_service_role_key: str = Field(
        default="",
        description="Service-role key; required for uploads, moves and deletes.",
    )
    storage_bucket: str = Field(default="media", description="Bucket name.")
    media_base_url: str = Field(
        default="",
        description="Public base URL of bucket objects; derived from SUPABASE_URL when blank.",
    )
    listing_root_prefix: str = Field(
        default="properties",
        description="Key prefix under which each listing owns a folder.",
    )
    staging_root_prefix: str = Field(
        default="staging",
        description="Key prefix for uploads made before the listing id is known.",
    )

    # ------------------------------------------------------------------
    # Reconciliation bounds
    # ------------------------------------------------------------------
    list_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Entries requested per blob store list call.",
    )
    max_list_pages: int = Field(
        default=1000,
        ge=1,
        description="Hard cap on list pages fetched per prefix.",
    )
    delete_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Keys sent per blob store batch-delete call.",
    )
    store_call_timeout_s: float = Field(
        default=30.0,
        gt=0.0,
        description=(
            "Deadline for one blob store call, retries and back-off included."
        ),
    )
    http_request_timeout_s: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for a single storage HTTP request (one attempt).",
    )
    http_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts per storage HTTP request (1 = no retries).",
    )

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------
    max_upload_files: int = Field(default=4, ge=1, description="Files accepted per upload.")
    max_upload_bytes: int = Field(
        default=20 * 1024 * 1024,
        ge=1,
        description="Per-file size limit in bytes.",
    )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    notification_link_approved: str = Field(
        default="/user/propertiaktif",
        description="Owner-facing link attached to 'approved' notifications.",
    )
    notification_link_rejected: str = Field(
        default="/user/propertiditolak",
        description="Owner-facing link attached to 'rejected' notifications.",
    )

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("storage_backend")
    @classmethod
    def _validate_storage_backend(cls, v: str) -> str:
        allowed = {"local", "supabase"}
        v_lower = v.strip().lower()
        if v_lower not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("listing_root_prefix", "staging_root_prefix")
    @classmethod
    def _strip_slashes(cls, v: str) -> str:
        """Store prefixes without leading/trailing slashes."""
        stripped = v.strip().strip("/")
        if not stripped:
            raise ValueError("key prefixes must not be blank")
        return stripped

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_prefixes_distinct(self) -> Settings:
        """Listing and staging prefixes must not overlap."""
        if self.listing_root_prefix == self.staging_root_prefix:
            raise ValueError(
                f"listing_root_prefix and staging_root_prefix are both "
                f"{self.listing_root_prefix!r}"
            )
        return self

    @model_validator(mode="after")
    def _warn_retry_budget(self) -> Settings:
        """Warn when the call deadline cannot cover every HTTP attempt."""
        budget = self.http_max_attempts * self.http_request_timeout_s
        if self.store_call_timeout_s < budget:
            logger.warning(
                "store_call_timeout_s=%.1f is shorter than http_max_attempts x "
                "http_request_timeout_s=%.1f; slow attempts will not be retried.",
                self.store_call_timeout_s,
                budget,
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def supabase_configured(self) -> bool:
        """``True`` if both the Supabase URL and service-role key are set."""
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def public_media_base(self) -> str | None:
        """Base URL that public object URLs of this bucket start with.

        ``MEDIA_BASE_URL`` wins when it is an http(s) URL; otherwise the
        Supabase public-object URL is derived from ``SUPABASE_URL``.  Returns
        ``None`` when neither is known.  Always ends with ``/``.
        """
        base = self.media_base_url.strip()
        if base.startswith(("http://", "https://")):
            return base.rstrip("/") + "/"
        url = self.supabase_url.strip()
        if url.startswith(("http://", "https://")):
            return f"{url.rstrip('/')}/storage/v1/object/public/{self.storage_bucket}/"
        return None
