"""
Referer and Origin checks against the allow-list.

Pure functions: no I/O, no state. Safe to call from any number of
concurrent requests.
"""

from typing import Optional

from .models import AllowListConfig, RefererDecision

# A referer may continue past the origin only with one of these
_ORIGIN_BOUNDARY = ("/", "?", "#")


def referer_matches_origin(referer: str, origin: str) -> bool:
    """
    Anchored prefix match of a referer against one origin.

    "https://example.com/page" matches "https://example.com", but
    "https://example.com.evil.com" and "https://example.comevil.com"
    do not: the character after the origin must be a path, query or
    fragment delimiter, or there must be nothing left at all.
    """
    if not referer.startswith(origin):
        return False
    rest = referer[len(origin):]
    return rest == "" or rest.startswith(_ORIGIN_BOUNDARY)


def validate_referer(
    referer: Optional[str],
    config: AllowListConfig,
) -> RefererDecision:
    """
    Decide whether a Referer header value is allowed.

    Comparison is case-sensitive and performs no scheme or host
    normalization, so origins must be configured exactly as browsers
    send them.

    Returns:
        MISSING if the header was absent, VALID if it matches any
        allowed origin, INVALID otherwise.
    """
    if referer is None:
        return RefererDecision.MISSING

    for origin in config.allowed_origins:
        if referer_matches_origin(referer, origin):
            return RefererDecision.VALID

    return RefererDecision.INVALID


def is_origin_allowed(origin: Optional[str], config: AllowListConfig) -> bool:
    """Check an Origin header for CORS. Exact match only."""
    if origin is None:
        return False
    return origin in config.allowed_origins
