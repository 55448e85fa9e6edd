"""
Domain models for hotlink protection.

These models describe the allow-list, the outcome of a referer check,
and what the pipeline hands back to the HTTP layer. They have no
dependencies on FastAPI or on the object store client.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional, Protocol
from urllib.parse import urlsplit


DEFAULT_CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_STORE_IDENTIFIER = "MEDIA_BUCKET"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GatewayError(Exception):
    """Base class for failures that abort request handling."""
    pass


class ConfigurationError(GatewayError):
    """Raised when the allow-list configuration is missing or malformed."""
    pass


class UpstreamError(GatewayError):
    """Raised when the object store fails for reasons other than not-found."""
    pass


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------

class ObjectBody(Protocol):
    """
    Single-pass object stream.

    `aclose` must release the underlying store resource even if
    iteration never started. Calling it more than once is harmless.
    """

    def __aiter__(self) -> AsyncIterator[bytes]:
        ...

    async def __anext__(self) -> bytes:
        ...

    async def aclose(self) -> None:
        ...


class RefererDecision(Enum):
    """Outcome of checking a Referer header against the allow-list."""
    VALID = "valid"
    MISSING = "missing"
    INVALID = "invalid"


def _check_origin(origin: str) -> None:
    """Reject anything that isn't a bare scheme://host[:port] origin."""
    parts = urlsplit(origin)
    if not parts.scheme or not parts.netloc:
        raise ConfigurationError(f"Allowed origin must be absolute: {origin!r}")
    if parts.path or parts.query or parts.fragment or origin.endswith(("?", "#")):
        raise ConfigurationError(
            f"Allowed origin must not carry a path, query or fragment: {origin!r}"
        )


@dataclass(frozen=True)
class AllowListConfig:
    """
    Hotlink protection settings, built once per process.

    Frozen so a single instance can be shared by every in-flight request
    without locking. Duplicate origins are dropped, keeping the first
    occurrence.
    """
    allowed_origins: tuple[str, ...]
    block_missing_referer: bool = True
    cache_control_value: str = DEFAULT_CACHE_CONTROL
    store_identifier: str = DEFAULT_STORE_IDENTIFIER

    def __post_init__(self) -> None:
        origins = tuple(dict.fromkeys(self.allowed_origins))
        if not origins:
            raise ConfigurationError("At least one allowed origin is required")
        for origin in origins:
            _check_origin(origin)
        if not self.store_identifier:
            raise ConfigurationError("Store identifier must not be empty")
        # frozen dataclass: bypass __setattr__ to store the normalized tuple
        object.__setattr__(self, "allowed_origins", origins)


@dataclass
class RetrievedObject:
    """
    A successful object store lookup.

    The body can be consumed exactly once. Whoever consumes it is
    responsible for draining or closing it.
    """
    body: ObjectBody
    content_type: Optional[str] = None
    etag: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.content_type:
            self.content_type = None
        if not self.etag:
            self.etag = None


@dataclass
class GatewayResponse:
    """
    Framework-neutral result of one pipeline run.

    Error responses carry a short fixed `text`; successful responses
    carry the object stream in `body`.
    """
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    text: Optional[str] = None
    body: Optional[ObjectBody] = None
