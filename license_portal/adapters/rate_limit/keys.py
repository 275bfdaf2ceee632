"""Rate limit key derivation.

A key partitions traffic into independently counted buckets. The default
key combines network identity, client software and route, so one noisy
client on one endpoint does not exhaust the budget of its other routes.
"""

from __future__ import annotations

import logging

from starlette.requests import Request

from license_portal.adapters.rate_limit.base import RateLimitConfig

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# Shared bucket for requests whose generator produced nothing usable
UNKNOWN_KEY = "key:unknown"

# Checked in order; the direct connection address is the last resort.
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def get_client_ip(request: Request) -> str:
    """Resolve the client IP from proxy headers or the connection.

    ``X-Forwarded-For`` may carry a chain of hops; the first entry is the
    originating client.

    Args:
        request: Incoming request.

    Returns:
        Client IP string, or ``"unknown"`` when nothing is available.
    """

    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def default_key_generator(request: Request) -> str:
    """Build the composite ``{ip}:{user_agent}:{path}`` key."""

    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent") or UNKNOWN
    return f"{ip}:{user_agent}:{request.url.path}"


def ip_key_generator(request: Request) -> str:
    """Key by client IP only, shared across every route."""

    return f"ip:{get_client_ip(request)}"


def user_key_generator(request: Request) -> str:
    """Key by authenticated user id (set upstream in ``X-User-ID``)."""

    user_id = request.headers.get("x-user-id") or "anonymous"
    return f"user:{user_id}"


def generate_key(request: Request, config: RateLimitConfig) -> str:
    """Derive the limiter key for a request.

    A config-supplied generator fully replaces the default. Empty results
    fall into the shared ``UNKNOWN_KEY`` bucket so they stay limited.

    Args:
        request: Incoming request.
        config: Limiter configuration, possibly carrying a key generator.

    Returns:
        Non-empty limiter key.
    """

    generator = config.key_generator or default_key_generator
    key = generator(request)
    if not key or not isinstance(key, str):
        logger.warning(
            "rate_limit.empty_key",
            extra={
                "request_path": request.url.path,
                "fallback_key": UNKNOWN_KEY,
            },
        )
        return UNKNOWN_KEY
    return key
