from __future__ import annotations

from fastapi import APIRouter, Depends

from license_portal.core.rate_limit import get_rate_limiters
from license_portal.services.rate_limit_registry import RateLimiterRegistry

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(registry: RateLimiterRegistry = Depends(get_rate_limiters)) -> dict:
    """Liveness check used by load balancers; exempt from rate limiting."""

    return {"status": "ok", "rate_limit_presets": registry.names()}
