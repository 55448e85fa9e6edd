"""
Object storage client for media objects.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
Both clients implement the read-only `ObjectStore` protocol the request
pipeline consumes: `get(bucket_identifier, key)` returns a handle or None.

Bucket identifiers are binding names (e.g. "MEDIA_BUCKET"). The R2 client
resolves a binding to a physical bucket through `StorageConfig`, so the
gateway configuration never has to know real bucket names.

boto3 is synchronous. Every call into it (the lookup, each chunk read,
closing the stream) runs in a worker thread so a slow store never blocks
the event loop.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ...core.access.models import UpstreamError

logger = logging.getLogger(__name__)

# 64 KiB keeps memory bounded regardless of object size
DEFAULT_CHUNK_SIZE = 64 * 1024

# Error codes S3-compatible stores use for a missing key
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class StorageError(UpstreamError):
    """Raised when storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    bucket_bindings maps binding names used by the gateway configuration
    to physical bucket names.
    """
    access_key_id: str
    secret_access_key: str
    endpoint_url: str
    bucket_bindings: dict[str, str] = field(default_factory=dict)
    region: str = "auto"  # R2 uses 'auto' for region
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def resolve_bucket(self, binding: str) -> str:
        """Return the bucket name for a binding, or raise StorageError."""
        try:
            return self.bucket_bindings[binding]
        except KeyError:
            raise StorageError(f"Unknown bucket binding: {binding}")


# ---------------------------------------------------------------------------
# R2 Storage
# ---------------------------------------------------------------------------

class R2ObjectBody:
    """
    Async iterator over a botocore StreamingBody.

    Owns the stream from the moment the object is fetched. `aclose`
    releases it whether or not iteration ever started, so the HTTP layer
    can always free the store connection, even when the client went away
    before the first chunk. The stream is also closed once it is drained
    or a read fails.
    """

    def __init__(self, stream, key: str, chunk_size: int) -> None:
        self._stream = stream
        self._key = key
        self._chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "R2ObjectBody":
        return self

    async def __anext__(self) -> bytes:
        from botocore.exceptions import BotoCoreError

        if self._closed:
            raise StopAsyncIteration

        try:
            chunk = await asyncio.to_thread(self._stream.read, self._chunk_size)
        except (BotoCoreError, OSError) as e:
            logger.error(
                "Failed to read object body",
                extra={"key": self._key, "error": str(e)}
            )
            await self.aclose()
            raise StorageError(f"Read failed: {e}") from e

        if not chunk:
            await self.aclose()
            raise StopAsyncIteration

        return chunk

    async def aclose(self) -> None:
        """Close the underlying stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._stream.close)


class R2Object:
    """Handle for an object returned by `R2StorageClient.get`."""

    def __init__(self, key: str, response: dict, chunk_size: int) -> None:
        self._key = key
        self._response = response
        self._chunk_size = chunk_size

    def body(self) -> Optional[R2ObjectBody]:
        stream = self._response.get("Body")
        if stream is None:
            return None
        return R2ObjectBody(stream, self._key, self._chunk_size)

    def content_type(self) -> Optional[str]:
        return self._response.get("ContentType") or None

    def etag(self) -> str:
        # boto3 returns the ETag already quoted, ready for the header
        return self._response.get("ETag") or ""


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. The same client works against
    actual S3, MinIO, or any other S3-compatible store.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize R2 client with boto3.

        boto3 is imported here (not at module level) so mock mode never
        needs it.
        """
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for R2 storage. Install with: pip install boto3"
            )

        self._config = config

        # R2 requires v4 signatures and has specific endpoint patterns
        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized R2 storage client",
            extra={
                "bindings": sorted(config.bucket_bindings),
                "endpoint": config.endpoint_url,
            }
        )

    async def get(self, bucket_identifier: str, key: str) -> Optional[R2Object]:
        """
        Fetch an object by key.

        Returns None if the key doesn't exist. Any other failure raises
        StorageError; there are no retries here.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        bucket_name = self._config.resolve_bucket(bucket_identifier)

        try:
            response = await asyncio.to_thread(
                self._s3_client.get_object,
                Bucket=bucket_name,
                Key=key,
            )
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            logger.error(
                "Failed to fetch object",
                extra={"bucket": bucket_name, "key": key, "error": str(e)}
            )
            raise StorageError(f"Fetch failed: {e}") from e
        except BotoCoreError as e:
            logger.error(
                "Failed to fetch object",
                extra={"bucket": bucket_name, "key": key, "error": str(e)}
            )
            raise StorageError(f"Fetch failed: {e}") from e

        return R2Object(key, response, self._config.chunk_size)


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _StoredObject:
    data: Optional[bytes]
    content_type: Optional[str]
    etag: str


class MockObjectBody:
    """In-memory body. Counts as an open stream until drained or closed."""

    def __init__(self, owner: "MockStorageClient", data: bytes, chunk_size: int) -> None:
        self._owner = owner
        self._data = data
        self._chunk_size = chunk_size
        self._offset = 0
        self._closed = False
        owner.open_streams += 1

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "MockObjectBody":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        if self._offset >= len(self._data):
            await self.aclose()
            raise StopAsyncIteration
        chunk = self._data[self._offset:self._offset + self._chunk_size]
        self._offset += len(chunk)
        return chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner.open_streams -= 1


class MockObject:
    """Handle for an object held by `MockStorageClient`."""

    def __init__(self, owner: "MockStorageClient", stored: _StoredObject) -> None:
        self._owner = owner
        self._stored = stored

    def body(self) -> Optional[MockObjectBody]:
        if self._stored.data is None:
            return None
        return MockObjectBody(self._owner, self._stored.data, self._owner.chunk_size)

    def content_type(self) -> Optional[str]:
        return self._stored.content_type

    def etag(self) -> str:
        return self._stored.etag


class MockStorageClient:
    """
    In-memory storage for local development.

    Buckets are plain dictionaries keyed by binding name. Objects can be
    stored without a body to reproduce a store entry whose data is gone.

    `open_streams` counts bodies handed out but not yet drained or
    closed, which lets tests check streams are released.
    """

    def __init__(
        self,
        buckets: Iterable[str] = (),
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._buckets: dict[str, dict[str, _StoredObject]] = {
            name: {} for name in buckets
        }
        self.chunk_size = chunk_size
        self.open_streams = 0
        self.lookups: list[tuple[str, str]] = []
        logger.info("Initialized mock storage client (in-memory)")

    def put_object(
        self,
        bucket_identifier: str,
        key: str,
        data: Optional[bytes],
        content_type: Optional[str] = None,
        etag: Optional[str] = None,
    ) -> None:
        """Store an object in memory. Creates the bucket if needed."""
        if etag is None:
            etag = f'"{hashlib.md5(data).hexdigest()}"' if data is not None else ""

        bucket = self._buckets.setdefault(bucket_identifier, {})
        bucket[key] = _StoredObject(data=data, content_type=content_type, etag=etag)

        logger.debug(
            "Stored object in mock storage",
            extra={
                "bucket": bucket_identifier,
                "key": key,
                "size_bytes": len(data) if data is not None else None,
            }
        )

    async def get(self, bucket_identifier: str, key: str) -> Optional[MockObject]:
        """Retrieve an object from memory."""
        self.lookups.append((bucket_identifier, key))

        if bucket_identifier not in self._buckets:
            raise StorageError(f"Unknown bucket binding: {bucket_identifier}")

        stored = self._buckets[bucket_identifier].get(key)
        if stored is None:
            return None

        return MockObject(self, stored)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
    buckets: Iterable[str] = (),
):
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return an in-memory client
        buckets: Binding names to pre-create in mock mode

    Returns:
        ObjectStore implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient(buckets=buckets)

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
