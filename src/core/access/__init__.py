"""
Hotlink protection: allow-list checks and the media request pipeline.
"""

from .models import (
    AllowListConfig,
    ConfigurationError,
    GatewayError,
    GatewayResponse,
    ObjectBody,
    RefererDecision,
    RetrievedObject,
    UpstreamError,
)
from .pipeline import ObjectHandle, ObjectStore, derive_object_key, handle_request
from .validator import is_origin_allowed, validate_referer

__all__ = [
    "AllowListConfig",
    "ConfigurationError",
    "GatewayError",
    "GatewayResponse",
    "ObjectBody",
    "RefererDecision",
    "RetrievedObject",
    "UpstreamError",
    "ObjectHandle",
    "ObjectStore",
    "derive_object_key",
    "handle_request",
    "is_origin_allowed",
    "validate_referer",
]
