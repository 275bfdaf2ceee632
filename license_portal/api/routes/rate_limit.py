from __future__ import annotations

from fastapi import APIRouter, Depends

from license_portal.core.auth import verify_admin_key
from license_portal.core.config import settings
from license_portal.core.logging import hash_for_logging
from license_portal.core.rate_limit import get_rate_limiters
from license_portal.schemas.rate_limit import (
    BlockedClient,
    CurrentLimit,
    EndpointStats,
    PresetStats,
    RateLimitStatsResponse,
)
from license_portal.services.rate_limit_registry import RateLimiterRegistry

router = APIRouter(tags=["Rate Limit"])


@router.get(
    "/admin/rate-limit/stats",
    response_model=RateLimitStatsResponse,
    dependencies=[Depends(verify_admin_key)],
)
def rate_limit_stats(
    registry: RateLimiterRegistry = Depends(get_rate_limiters),
) -> RateLimitStatsResponse:
    """Report in-process rate limiting state for administrators.

    Keys are returned hashed; they embed client IPs and user agents.
    """

    presets = [PresetStats(**stats) for stats in registry.stats()]

    current: list[CurrentLimit] = []
    for limiter in registry:
        for key in limiter.store.active_keys():
            info = limiter.get_rate_limit_info(key)
            if info is None:
                continue
            current.append(
                CurrentLimit(
                    preset=limiter.name,
                    key_hash=hash_for_logging(key),
                    remaining=info.remaining,
                    total=info.total,
                    reset=info.reset_at,
                )
            )
    current.sort(key=lambda item: (item.remaining, item.preset))

    allowed = sum(p.allowed for p in presets)
    blocked = sum(p.blocked for p in presets)
    top_n = settings.app.stats_top_n
    return RateLimitStatsResponse(
        total_requests=allowed + blocked,
        blocked_requests=blocked,
        presets=presets,
        current_limits=current[: settings.app.stats_max_keys],
        top_blocked_clients=[BlockedClient(**row) for row in registry.top_blocked_clients(top_n)],
        top_endpoints=[EndpointStats(**row) for row in registry.top_endpoints(top_n)],
    )
