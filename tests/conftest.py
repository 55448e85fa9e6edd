"""
Shared fixtures for the test suite.

Tests never touch real object storage: the store is always a
MockStorageClient seeded per test.
"""

import pytest

from src.core.access.models import AllowListConfig
from src.infrastructure.storage.client import MockStorageClient

BUCKET = "MEDIA_BUCKET"
ORIGINS = ("https://example.com", "https://cms.example.com")


@pytest.fixture
def allow_list() -> AllowListConfig:
    """Default configuration: two origins, missing referer blocked."""
    return AllowListConfig(allowed_origins=ORIGINS)


@pytest.fixture
def store() -> MockStorageClient:
    """Mock store with a PNG under foo.png and a body-less entry."""
    client = MockStorageClient(buckets=[BUCKET], chunk_size=4)
    client.put_object(BUCKET, "foo.png", b"\x89PNG-image-bytes", content_type="image/png")
    client.put_object(BUCKET, "broken.jpg", None, content_type="image/jpeg")
    return client
