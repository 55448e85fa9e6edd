"""
Tests for the object store clients.

The R2 client is exercised against a botocore Stubber, so no network
or credentials are needed.
"""

import io

import pytest
from botocore.exceptions import IncompleteReadError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from src.core.access.models import UpstreamError
from src.infrastructure.storage.client import (
    MockStorageClient,
    R2ObjectBody,
    R2StorageClient,
    StorageConfig,
    StorageError,
    create_storage_client,
)


async def _read(body) -> bytes:
    return b"".join([chunk async for chunk in body])


@pytest.fixture
def r2_client() -> R2StorageClient:
    config = StorageConfig(
        access_key_id="test-key",
        secret_access_key="test-secret",
        endpoint_url="https://account.r2.cloudflarestorage.com",
        bucket_bindings={"MEDIA_BUCKET": "media-prod"},
        chunk_size=3,
    )
    return R2StorageClient(config)


class FakeStream:
    """Stands in for a botocore StreamingBody."""

    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error
        self.closed = False
        self.close_calls = 0

    def read(self, amt=None):
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        return b""

    def close(self):
        self.closed = True
        self.close_calls += 1


# ---------------------------------------------------------------------------
# R2 Storage Tests
# ---------------------------------------------------------------------------

class TestR2StorageClient:
    """Tests for the boto3-backed client."""

    @pytest.mark.asyncio
    async def test_get_returns_handle(self, r2_client):
        data = b"hello world"
        with Stubber(r2_client._s3_client) as stubber:
            stubber.add_response(
                "get_object",
                {
                    "Body": StreamingBody(io.BytesIO(data), len(data)),
                    "ContentType": "image/png",
                    "ETag": '"abc123"',
                },
                {"Bucket": "media-prod", "Key": "foo.png"},
            )

            handle = await r2_client.get("MEDIA_BUCKET", "foo.png")

        assert handle is not None
        assert handle.content_type() == "image/png"
        assert handle.etag() == '"abc123"'
        assert await _read(handle.body()) == data

    @pytest.mark.asyncio
    async def test_missing_metadata(self, r2_client):
        with Stubber(r2_client._s3_client) as stubber:
            stubber.add_response(
                "get_object",
                {"Body": StreamingBody(io.BytesIO(b"x"), 1)},
                {"Bucket": "media-prod", "Key": "raw"},
            )

            handle = await r2_client.get("MEDIA_BUCKET", "raw")

        assert handle.content_type() is None
        assert handle.etag() == ""

    @pytest.mark.asyncio
    async def test_no_such_key_returns_none(self, r2_client):
        with Stubber(r2_client._s3_client) as stubber:
            stubber.add_client_error(
                "get_object",
                service_error_code="NoSuchKey",
                http_status_code=404,
                expected_params={"Bucket": "media-prod", "Key": "missing.png"},
            )

            assert await r2_client.get("MEDIA_BUCKET", "missing.png") is None

    @pytest.mark.asyncio
    async def test_other_errors_raise_storage_error(self, r2_client):
        with Stubber(r2_client._s3_client) as stubber:
            stubber.add_client_error(
                "get_object",
                service_error_code="AccessDenied",
                http_status_code=403,
            )

            with pytest.raises(StorageError, match="Fetch failed"):
                await r2_client.get("MEDIA_BUCKET", "foo.png")

    @pytest.mark.asyncio
    async def test_unknown_binding_raises(self, r2_client):
        with pytest.raises(StorageError, match="Unknown bucket binding"):
            await r2_client.get("OTHER_BUCKET", "foo.png")

    def test_storage_error_is_upstream_error(self):
        assert issubclass(StorageError, UpstreamError)


class TestR2ObjectBody:
    """Tests for chunked reads of a store stream."""

    @pytest.mark.asyncio
    async def test_reads_all_chunks_and_closes(self):
        stream = FakeStream([b"ab", b"cd"])
        body = R2ObjectBody(stream, "k", 2)

        assert await _read(body) == b"abcd"
        assert stream.closed
        assert body.closed

    @pytest.mark.asyncio
    async def test_early_close_releases_stream(self):
        stream = FakeStream([b"ab", b"cd"])
        body = R2ObjectBody(stream, "k", 2)

        assert await body.__anext__() == b"ab"
        await body.aclose()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_close_before_first_read_releases_stream(self):
        """A client can disconnect before anything was read."""
        stream = FakeStream([b"ab"])
        body = R2ObjectBody(stream, "k", 2)

        await body.aclose()

        assert stream.closed
        assert await _read(body) == b""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        stream = FakeStream([])
        body = R2ObjectBody(stream, "k", 2)

        await body.aclose()
        await body.aclose()

        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_read_failure_raises_storage_error(self):
        error = IncompleteReadError(actual_bytes=2, expected_bytes=10)
        stream = FakeStream([b"ab"], error=error)

        with pytest.raises(StorageError, match="Read failed"):
            await _read(R2ObjectBody(stream, "k", 2))
        assert stream.closed


# ---------------------------------------------------------------------------
# Mock Storage Tests
# ---------------------------------------------------------------------------

class TestMockStorageClient:
    """Tests for the in-memory client."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        client = MockStorageClient(buckets=["MEDIA_BUCKET"])
        client.put_object("MEDIA_BUCKET", "a.txt", b"abc", content_type="text/plain")

        handle = await client.get("MEDIA_BUCKET", "a.txt")

        assert handle.content_type() == "text/plain"
        assert handle.etag() == '"900150983cd24fb0d6963f7d28e17f72"'
        assert await _read(handle.body()) == b"abc"

    @pytest.mark.asyncio
    async def test_body_counts_as_open_until_closed(self):
        client = MockStorageClient(buckets=["MEDIA_BUCKET"])
        client.put_object("MEDIA_BUCKET", "a.txt", b"abc")

        body = (await client.get("MEDIA_BUCKET", "a.txt")).body()
        assert client.open_streams == 1

        await body.aclose()
        assert client.open_streams == 0

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self):
        client = MockStorageClient(buckets=["MEDIA_BUCKET"])
        assert await client.get("MEDIA_BUCKET", "nope") is None

    @pytest.mark.asyncio
    async def test_unknown_bucket_raises(self):
        client = MockStorageClient()
        with pytest.raises(StorageError):
            await client.get("MEDIA_BUCKET", "a.txt")

    @pytest.mark.asyncio
    async def test_entry_without_body(self):
        client = MockStorageClient()
        client.put_object("MEDIA_BUCKET", "gone.png", None)

        handle = await client.get("MEDIA_BUCKET", "gone.png")

        assert handle is not None
        assert handle.body() is None
        assert handle.etag() == ""


class TestCreateStorageClient:
    def test_mock_mode(self):
        client = create_storage_client(mock_mode=True, buckets=["MEDIA_BUCKET"])
        assert isinstance(client, MockStorageClient)

    def test_requires_config_without_mock_mode(self):
        with pytest.raises(ValueError):
            create_storage_client()
