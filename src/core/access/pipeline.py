"""
Request pipeline for the media gateway.

One call to `handle_request` per inbound request. The steps run in a
fixed order and the first one that produces a response wins:

1. Method gate (GET only)
2. Referer gate
3. Key derivation from the request path
4. Object lookup
5. Response assembly (content type, caching, ETag, CORS)

The pipeline knows nothing about HTTP frameworks or boto3. It receives
plain values plus an `ObjectStore` and returns a `GatewayResponse`.
Store failures are not caught here - they propagate as `UpstreamError`
and the application turns them into a generic 500.
"""

import logging
from typing import Mapping, Optional, Protocol

from .models import (
    AllowListConfig,
    GatewayResponse,
    ObjectBody,
    RefererDecision,
    RetrievedObject,
)
from .validator import is_origin_allowed, validate_referer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class ObjectHandle(Protocol):
    """An object returned by the store. Body is read at most once."""

    def body(self) -> Optional[ObjectBody]:
        """Return the object's byte stream, or None if it has no body."""
        ...

    def content_type(self) -> Optional[str]:
        ...

    def etag(self) -> str:
        """HTTP entity tag; empty string when the store has none."""
        ...


class ObjectStore(Protocol):
    """
    Interface for the backing object store.

    The pipeline only ever reads. Implementations return None for a
    missing key and raise `UpstreamError` for anything else that goes
    wrong.
    """

    async def get(
        self,
        bucket_identifier: str,
        key: str,
    ) -> Optional[ObjectHandle]:
        ...


# ---------------------------------------------------------------------------
# Fixed responses
# ---------------------------------------------------------------------------

METHOD_NOT_ALLOWED = "Method Not Allowed"
FORBIDDEN_MISSING_REFERER = "Forbidden: Missing Referer"
FORBIDDEN_INVALID_REFERER = "Forbidden: Invalid Referer"
NOT_FOUND = "Not Found"


def _error(status_code: int, text: str) -> GatewayResponse:
    return GatewayResponse(status_code=status_code, text=text)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Header lookup that also works for plain lower-case dicts."""
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------

def derive_object_key(path: str) -> str:
    """
    Turn a request path into an object key.

    Exactly one leading "/" is removed. Nothing else is touched: no
    percent-decoding and no "." / ".." collapsing.
    """
    if path.startswith("/"):
        return path[1:]
    return path


def check_referer(
    referer: Optional[str],
    config: AllowListConfig,
) -> Optional[GatewayResponse]:
    """Apply the referer gate. Returns a 403 response, or None to continue."""
    decision = validate_referer(referer, config)

    if decision is RefererDecision.VALID:
        return None

    if decision is RefererDecision.MISSING:
        if not config.block_missing_referer:
            return None
        logger.info("Request denied: missing referer")
        return _error(403, FORBIDDEN_MISSING_REFERER)

    if decision is RefererDecision.INVALID:
        logger.info("Request denied: invalid referer", extra={"referer": referer})
        return _error(403, FORBIDDEN_INVALID_REFERER)

    raise AssertionError(f"Unhandled referer decision: {decision!r}")


async def fetch_object(
    store: ObjectStore,
    config: AllowListConfig,
    key: str,
) -> Optional[RetrievedObject]:
    """
    Look up a key in the configured bucket.

    Returns None both when the key doesn't exist and when the store has
    an entry without a body. The latter usually means broken metadata in
    the store, so it gets its own warning.
    """
    handle = await store.get(config.store_identifier, key)
    if handle is None:
        logger.debug("Object not found", extra={"key": key})
        return None

    body = handle.body()
    if body is None:
        logger.warning(
            "Object exists but has no body",
            extra={"key": key, "bucket": config.store_identifier},
        )
        return None

    return RetrievedObject(
        body=body,
        content_type=handle.content_type(),
        etag=handle.etag(),
    )


def build_response_headers(
    obj: RetrievedObject,
    origin: Optional[str],
    config: AllowListConfig,
) -> dict[str, str]:
    """Headers for a successful response."""
    headers: dict[str, str] = {}

    if obj.content_type:
        headers["Content-Type"] = obj.content_type

    headers["Cache-Control"] = config.cache_control_value

    if obj.etag:
        headers["ETag"] = obj.etag

    # Echo the literal origin, never "*"
    if origin is not None and is_origin_allowed(origin, config):
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = "GET"

    return headers


async def handle_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    config: AllowListConfig,
    store: ObjectStore,
) -> GatewayResponse:
    """
    Run the full pipeline for one request.

    Args:
        method: HTTP method as received
        path: Request path, e.g. "/images/cat.png"
        headers: Request headers (case-insensitive mapping preferred)
        config: Process-wide allow-list configuration
        store: Object store to read from

    Returns:
        GatewayResponse with status 200, 403, 404 or 405

    Raises:
        UpstreamError: If the store lookup fails
    """
    if method != "GET":
        return _error(405, METHOD_NOT_ALLOWED)

    referer = _header(headers, "Referer")
    origin = _header(headers, "Origin")

    denied = check_referer(referer, config)
    if denied is not None:
        return denied

    key = derive_object_key(path)
    if not key:
        return _error(404, NOT_FOUND)

    obj = await fetch_object(store, config, key)
    if obj is None:
        return _error(404, NOT_FOUND)

    response_headers = build_response_headers(obj, origin, config)

    logger.debug(
        "Serving object",
        extra={"key": key, "content_type": obj.content_type},
    )

    return GatewayResponse(
        status_code=200,
        headers=response_headers,
        body=obj.body,
    )
