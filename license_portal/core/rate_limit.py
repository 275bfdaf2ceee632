"""Rate limiting wiring for the HTTP layer.

This module connects the preset registry to FastAPI:
- ``rate_limit_middleware``: app-wide limiting, preset chosen by path
- ``enforce_rate_limit``: route-level dependency for an explicit preset
- ``get_rate_limiters``: dependency returning the registry from app state

The registry lives on ``app.state.rate_limiters`` and is created by the app
factory, so each app instance (and each test) has its own counters.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import Request, Response

from license_portal.core.config import settings
from license_portal.core.errors import RateLimitExceededError
from license_portal.services.api_rate_limiter import apply_rate_limit_headers
from license_portal.services.rate_limit_registry import RateLimiterRegistry

logger = logging.getLogger(__name__)


def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    """Return the registry attached to the running application."""
    return request.app.state.rate_limiters


def _is_exempt(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in settings.rate_limit.exempt_path_prefixes())


async def rate_limit_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """HTTP middleware applying the path's preset to every request.

    Limited requests are answered with 429 without reaching the route.
    Allowed requests proceed; afterwards the outcome (status < 400 counts as
    success) is recorded so presets that skip successful or failed requests
    can discount them, and quota headers are attached.

    Usage:
        app.middleware("http")(rate_limit_middleware)
    """

    if not settings.rate_limit.enabled or _is_exempt(request.url.path):
        return await call_next(request)

    registry: RateLimiterRegistry | None = getattr(request.app.state, "rate_limiters", None)
    if registry is None:
        logger.warning(
            "rate_limit.registry_missing",
            extra={"request_path": request.url.path},
        )
        return await call_next(request)

    limiter = registry.for_path(request.url.path)
    decision = limiter.evaluate(request)
    if decision.is_limited:
        return await limiter.limited_response(request, decision)

    try:
        response = await call_next(request)
    except Exception:
        if decision.key is not None:
            limiter.record_request_outcome(decision.key, False)
        raise

    if decision.key is not None:
        limiter.record_request_outcome(decision.key, response.status_code < 400)
    if settings.rate_limit.include_headers:
        apply_rate_limit_headers(response, decision.result)
    return response


def enforce_rate_limit(preset: str, **overrides: Any) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing ``preset`` on a single route.

    Overrides replace fields of the preset's default config for this route
    only (e.g. ``key_generator=user_key_generator``). The counters are shared
    with the preset.

    Usage:
        @router.post("/licenses", dependencies=[Depends(enforce_rate_limit("sensitive"))])

    Args:
        preset: Registry preset name.
        **overrides: RateLimitConfig field overrides.

    Returns:
        FastAPI dependency raising RateLimitExceededError when limited.
    """

    async def dependency(request: Request, response: Response) -> None:
        if not settings.rate_limit.enabled:
            return

        limiter = get_rate_limiters(request).get(preset)
        decision = limiter.evaluate(request, limiter.resolve_config(**overrides))
        if decision.is_limited:
            await limiter.notify_limit_reached(request, decision)
            raise RateLimitExceededError(
                details={"preset": preset, "retry_after": decision.result.retry_after_seconds},
                result=decision.result,
            )

        if settings.rate_limit.include_headers:
            apply_rate_limit_headers(response, decision.result)

    return dependency
