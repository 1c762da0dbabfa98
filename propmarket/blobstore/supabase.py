"""Supabase Storage REST client.

Wraps :class:`httpx.AsyncClient` with:

* **Service-role authentication** — ``Authorization: Bearer <key>`` and
  ``apikey`` headers on every request.
* **Automatic retries** — exponential back-off with random jitter via
  :mod:`tenacity`; configurable number of attempts.
* **Rate-limit awareness** — HTTP 429 responses pause retries for the
  duration given by ``Retry-After``, then raise
  :class:`~propmarket.core.exceptions.BlobStoreRateLimitError` if retries are
  exhausted.
* **Structured error mapping** — transient (5xx, network) errors are retried;
  other client errors (4xx ≠ 429) raise
  :class:`~propmarket.core.exceptions.BlobStoreError` immediately without
  consuming retry budget.

Endpoints used (relative to ``<SUPABASE_URL>/storage/v1``)::

    POST   /object/list/<bucket>     {"prefix", "limit", "offset", "sortBy"}
    POST   /object/<bucket>/<key>    raw bytes, x-upsert: false
    POST   /object/move              {"bucketId", "sourceKey", "destinationKey"}
    DELETE /object/<bucket>          {"prefixes": [...]}  → removed objects

Typical usage::

    async with SupabaseBlobStore(url=..., service_key=..., bucket="media") as store:
        page = await store.list("properties/P1")
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import Any, Final
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from propmarket.blobstore.base import BlobEntry, BlobStore
from propmarket.core.exceptions import BlobStoreError, BlobStoreRateLimitError

__all__ = ["SupabaseBlobStore"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Default per-request timeout in seconds.
_DEFAULT_TIMEOUT: Final[float] = 30.0

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 5.0


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(BlobStoreError):
    """Internal: signals a 5xx status for tenacity to retry."""


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _storage_wait(retry_state: RetryCallState) -> float:
    """Seconds to sleep before the next attempt.

    A :class:`BlobStoreRateLimitError` with a positive ``retry_after`` is
    honoured exactly; everything else backs off exponentially with jitter.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if (
            isinstance(exc, BlobStoreRateLimitError)
            and exc.retry_after is not None
            and exc.retry_after > 0
        ):
            logger.debug("Honouring storage Retry-After of %.1f s", exc.retry_after)
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SupabaseBlobStore(BlobStore):
    """Blob store backed by a Supabase Storage bucket.

    Args:
        url: Supabase project URL (``https://<ref>.supabase.co``).
        service_key: Service-role key.
        bucket: Bucket name.
        max_attempts: Total attempts per request including the first (≥ 1).
        timeout: Per-request timeout in seconds.
        transport: Optional custom transport (``httpx.MockTransport`` in tests).

    Raises:
        ValueError: If ``url``/``service_key`` are blank or ``max_attempts`` < 1.
    """

    backend = "supabase"

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        bucket: str,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not service_key:
            raise ValueError("Supabase URL and service-role key are required.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._base_url = f"{url.rstrip('/')}/storage/v1"
        self._service_key = service_key
        self._bucket = bucket
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def bucket(self) -> str:
        return self._bucket

    # ------------------------------------------------------------------
    # BlobStore contract
    # ------------------------------------------------------------------

    async def list(self, prefix: str, *, limit: int = 100, offset: int = 0) -> list[BlobEntry]:
        response = await self._request(
            "list",
            "POST",
            f"/object/list/{self._bucket}",
            json={
                "prefix": prefix.strip("/"),
                "limit": limit,
                "offset": offset,
                "sortBy": {"column": "name", "order": "asc"},
            },
        )
        body = _json_body(response, "list")
        if not isinstance(body, list):
            raise BlobStoreError("list", f"Unexpected list response: {type(body).__name__}")
        return [_entry_from_item(item) for item in body if isinstance(item, dict)]

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        await self._request(
            "upload",
            "POST",
            f"/object/{self._bucket}/{_quote_key(key)}",
            content=data,
            headers={"content-type": content_type, "x-upsert": "false"},
        )
        logger.debug("Uploaded %s (%d bytes, %s)", key, len(data), content_type)

    async def move(self, from_key: str, to_key: str) -> None:
        await self._request(
            "move",
            "POST",
            "/object/move",
            json={
                "bucketId": self._bucket,
                "sourceKey": from_key,
                "destinationKey": to_key,
            },
        )

    async def remove(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        response = await self._request(
            "remove",
            "DELETE",
            f"/object/{self._bucket}",
            json={"prefixes": list(keys)},
        )
        body = _json_body(response, "remove")
        if not isinstance(body, list):
            raise BlobStoreError("remove", f"Unexpected remove response: {type(body).__name__}")
        return len(body)

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("Supabase storage HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._service_key}",
                    "apikey": self._service_key,
                    "Accept": "application/json",
                },
            )
            logger.debug("Supabase storage session opened (base_url=%r).", self._base_url)
        return self._http

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one storage call with tenacity-managed retries.

        Raises:
            BlobStoreRateLimitError: HTTP 429 after exhausting retries.
            BlobStoreError: Every other failure after exhausting retries.
        """
        retry_types = (
            _RetryableServerError,
            BlobStoreRateLimitError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Storage %s %s attempt %d/%d failed (%s). Retrying in %.1f s",
                operation,
                path,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                _storage_wait(rs),
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=_storage_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(
                        operation, method, path, json=json, content=content, headers=headers
                    )
        except httpx.TransportError as exc:
            raise BlobStoreError(operation, f"Transport error on {path}: {exc}") from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Any | None,
        content: bytes | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(
                method, path, json=json, content=content, headers=headers
            )
        except httpx.TransportError:
            logger.debug("Transport error on %s %s.", method, path, exc_info=True)
            raise

        logger.debug("Storage %s %s → %d", method, path, response.status_code)

        if response.is_success:
            return response

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning("Storage rate limit on %s, retry_after=%.1f s", operation, retry_after)
            raise BlobStoreRateLimitError(operation, retry_after=retry_after)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                operation, f"Transient HTTP {response.status_code} on {path}"
            )

        raise BlobStoreError(
            operation, f"HTTP {response.status_code} on {path}: {response.text[:200]}"
        )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _quote_key(key: str) -> str:
    """Percent-encode each key segment, keeping the ``/`` separators."""
    return "/".join(quote(part, safe="") for part in key.strip("/").split("/"))


def _json_body(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise BlobStoreError(operation, f"Response is not JSON: {response.text[:200]}") from exc


def _entry_from_item(item: dict[str, Any]) -> BlobEntry:
    """Build a :class:`BlobEntry`; folders come back with ``metadata: null``."""
    metadata = item.get("metadata") or {}
    size = metadata.get("size") if isinstance(metadata, dict) else None
    return BlobEntry(name=str(item.get("name", "")), size=int(size) if size is not None else None)


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract the back-off from a 429 ``Retry-After`` header (default 1 s)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)
    return 1.0
