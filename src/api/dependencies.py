"""
FastAPI dependency injection.

Dependencies provide the allow-list configuration and the object store
client to the media route. Using dependency injection means:
- The route doesn't build its own collaborators (easier to test)
- Tests can swap in a mock store via app.dependency_overrides
- Configuration is centralized

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from ..config.settings import Settings, get_settings
from ..core.access.models import AllowListConfig
from ..core.access.pipeline import ObjectStore
from ..infrastructure.storage.client import StorageConfig, create_storage_client

logger = logging.getLogger(__name__)

# Shared store client (one per process; boto3 clients are thread-safe)
_storage_client = None


# ---------------------------------------------------------------------------
# Configuration Dependencies
# ---------------------------------------------------------------------------

@lru_cache()
def get_allow_list_config() -> AllowListConfig:
    """
    Provide the process-wide allow-list configuration.

    Built once from settings and reused by every request. If the
    configuration is invalid, ConfigurationError propagates on every
    request (lru_cache doesn't cache exceptions) and the application
    answers 500.
    """
    config = get_settings().to_allow_list_config()

    logger.info(
        "Loaded allow-list configuration",
        extra={
            "allowed_origins": list(config.allowed_origins),
            "block_missing_referer": config.block_missing_referer,
            "store_identifier": config.store_identifier,
        }
    )

    return config


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> ObjectStore:
    """
    Provide storage client for object lookups.

    Returns either R2 client or mock client based on settings. The client
    is created on first use and shared across requests, so objects put
    into the mock store persist for the life of the process.
    """
    global _storage_client

    if _storage_client is not None:
        return _storage_client

    if settings.r2_mock_mode:
        _storage_client = create_storage_client(
            mock_mode=True,
            buckets=[settings.r2_bucket_binding],
        )
        logger.info("Created shared mock storage client")
    else:
        config = StorageConfig(
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            endpoint_url=settings.r2_endpoint,
            bucket_bindings={settings.r2_bucket_binding: settings.r2_bucket_name},
        )
        _storage_client = create_storage_client(config=config)
        logger.info("Created shared R2 storage client")

    return _storage_client


def reset_dependencies() -> None:
    """Drop cached settings and clients. Used by tests."""
    global _storage_client
    _storage_client = None
    get_allow_list_config.cache_clear()
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

AllowListConfigDep = Annotated[AllowListConfig, Depends(get_allow_list_config)]
StorageClientDep = Annotated[ObjectStore, Depends(get_storage_client)]
