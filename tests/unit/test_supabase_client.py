"""Unit tests for :class:`~propmarket.blobstore.supabase.SupabaseBlobStore`.

All HTTP traffic goes through :class:`httpx.MockTransport`; retry back-off is
patched to zero so the retry tests run instantly.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

import httpx
import pytest

from propmarket.blobstore import supabase as supabase_module
from propmarket.blobstore.supabase import SupabaseBlobStore, _parse_retry_after
from propmarket.core.exceptions import BlobStoreError, BlobStoreRateLimitError

logger = logging.getLogger(__name__)

Handler = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(supabase_module, "_storage_wait", lambda retry_state: 0.0)


class _Recorder:
    """Replays scripted responses and records every request."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


def _make_store(handler: Handler, max_attempts: int = 3) -> SupabaseBlobStore:
    return SupabaseBlobStore(
        url="https://abc.supabase.co/",
        service_key="service-key",
        bucket="media",
        max_attempts=max_attempts,
        transport=httpx.MockTransport(handler),
    )


# ===========================================================================
# Construction
# ===========================================================================


class TestConstruction:
    def test_requires_url_and_key(self) -> None:
        with pytest.raises(ValueError):
            SupabaseBlobStore(url="", service_key="k", bucket="media")
        with pytest.raises(ValueError):
            SupabaseBlobStore(url="https://x.supabase.co", service_key="", bucket="media")

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            SupabaseBlobStore(
                url="https://x.supabase.co", service_key="k", bucket="media", max_attempts=0
            )


# ===========================================================================
# Operations
# ===========================================================================


class TestOperations:
    async def test_list(self) -> None:
        recorder = _Recorder(
            httpx.Response(
                200,
                json=[
                    {"name": "a.jpg", "id": "1", "metadata": {"size": 10, "mimetype": "image/jpeg"}},
                    {"name": "thumbs", "id": None, "metadata": None},
                ],
            )
        )
        async with _make_store(recorder) as store:
            entries = await store.list("/properties/P1/", limit=50, offset=100)

        assert [(e.name, e.size, e.is_file) for e in entries] == [
            ("a.jpg", 10, True),
            ("thumbs", None, False),
        ]
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/list/media"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.headers["apikey"] == "service-key"
        assert json.loads(request.content) == {
            "prefix": "properties/P1",
            "limit": 50,
            "offset": 100,
            "sortBy": {"column": "name", "order": "asc"},
        }

    async def test_list_unexpected_body(self) -> None:
        async with _make_store(_Recorder(httpx.Response(200, json={"oops": 1}))) as store:
            with pytest.raises(BlobStoreError, match="Unexpected list response"):
                await store.list("properties")

    async def test_upload(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"Key": "media/properties/P1/x.jpg"}))
        async with _make_store(recorder) as store:
            await store.upload("properties/P1/My Photo.jpg", b"bytes", "image/jpeg")

        request = recorder.requests[0]
        assert request.url.raw_path == b"/storage/v1/object/media/properties/P1/My%20Photo.jpg"
        assert request.headers["content-type"] == "image/jpeg"
        assert request.headers["x-upsert"] == "false"
        assert request.content == b"bytes"

    async def test_move(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"message": "Successfully moved"}))
        async with _make_store(recorder) as store:
            await store.move("staging/T1/a.jpg", "properties/P1/a.jpg")

        request = recorder.requests[0]
        assert request.url.path == "/storage/v1/object/move"
        assert json.loads(request.content) == {
            "bucketId": "media",
            "sourceKey": "staging/T1/a.jpg",
            "destinationKey": "properties/P1/a.jpg",
        }

    async def test_remove_counts_acknowledged_objects(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[{"name": "properties/P1/c.jpg"}]))
        async with _make_store(recorder) as store:
            removed = await store.remove(["properties/P1/c.jpg", "properties/P1/d.jpg"])

        assert removed == 1
        request = recorder.requests[0]
        assert request.method == "DELETE"
        assert request.url.path == "/storage/v1/object/media"
        assert json.loads(request.content) == {
            "prefixes": ["properties/P1/c.jpg", "properties/P1/d.jpg"]
        }

    async def test_remove_nothing_skips_request(self) -> None:
        recorder = _Recorder(httpx.Response(500))
        async with _make_store(recorder) as store:
            assert await store.remove([]) == 0
        assert recorder.requests == []


# ===========================================================================
# Retries and error mapping
# ===========================================================================


class TestRetries:
    async def test_server_error_retried(self) -> None:
        recorder = _Recorder(httpx.Response(503), httpx.Response(200, json=[]))
        async with _make_store(recorder) as store:
            assert await store.list("properties") == []
        assert len(recorder.requests) == 2

    async def test_server_error_exhausts_attempts(self) -> None:
        recorder = _Recorder(httpx.Response(500))
        async with _make_store(recorder, max_attempts=3) as store:
            with pytest.raises(BlobStoreError, match="Transient HTTP 500"):
                await store.remove(["a.jpg"])
        assert len(recorder.requests) == 3

    async def test_rate_limit_retried_then_raised(self) -> None:
        recorder = _Recorder(httpx.Response(429, headers={"Retry-After": "2"}))
        async with _make_store(recorder, max_attempts=2) as store:
            with pytest.raises(BlobStoreRateLimitError) as exc_info:
                await store.list("properties")
        assert exc_info.value.retry_after == 2.0
        assert len(recorder.requests) == 2

    async def test_client_error_not_retried(self) -> None:
        recorder = _Recorder(httpx.Response(400, json={"error": "Invalid key"}))
        async with _make_store(recorder) as store:
            with pytest.raises(BlobStoreError, match="HTTP 400") as exc_info:
                await store.move("a", "b")
        assert exc_info.value.operation == "move"
        assert len(recorder.requests) == 1

    async def test_transport_error_wrapped(self) -> None:
        recorder = _Recorder(httpx.ConnectError("connection refused"))
        async with _make_store(recorder, max_attempts=2) as store:
            with pytest.raises(BlobStoreError, match="Transport error"):
                await store.list("properties")
        assert len(recorder.requests) == 2

    async def test_non_json_body(self) -> None:
        recorder = _Recorder(httpx.Response(200, text="<html>"))
        async with _make_store(recorder) as store:
            with pytest.raises(BlobStoreError, match="not JSON"):
                await store.remove(["a.jpg"])


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [("3", 3.0), ("0.2", 1.0), ("soon", 1.0), (None, 1.0)],
    )
    def test_values(self, header: str | None, expected: float) -> None:
        headers = {"Retry-After": header} if header is not None else {}
        assert _parse_retry_after(httpx.Response(429, headers=headers)) == expected
