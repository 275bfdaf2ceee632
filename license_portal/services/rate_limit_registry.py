"""Named rate limit presets and path-based dispatch.

The registry is built once at startup and injected where needed
(``app.state.rate_limiters``), so tests and deployments can construct their
own instead of sharing module-level limiters.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from starlette.requests import Request

from license_portal.adapters.rate_limit.base import RateLimitConfig
from license_portal.adapters.rate_limit.in_memory import epoch_ms
from license_portal.core.config import RateLimitSettings
from license_portal.core.logging import hash_for_logging
from license_portal.services.api_rate_limiter import ApiRateLimiter

logger = logging.getLogger(__name__)

GENERAL = "general"
AUTH = "auth"
SENSITIVE = "sensitive"
UPLOAD = "upload"
ADMIN = "admin"
PUBLIC = "public"

PRESET_NAMES = (GENERAL, AUTH, SENSITIVE, UPLOAD, ADMIN, PUBLIC)

# Ordered (matcher, preset) table; first match wins, GENERAL otherwise.
PATH_RULES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (lambda path: path.startswith("/api/auth/"), AUTH),
    (lambda path: "/reset-password" in path or "/forgot-password" in path, SENSITIVE),
    (lambda path: path.startswith("/api/admin/"), ADMIN),
    (lambda path: "/upload" in path, UPLOAD),
    (lambda path: path.startswith("/api/public/"), PUBLIC),
)


def resolve_preset(path: str) -> str:
    """Return the preset name applying to a request path."""

    for matches, preset in PATH_RULES:
        if matches(path):
            return preset
    return GENERAL


def log_limit_reached(request: Request, key: str) -> None:
    """Default ``on_limit_reached`` hook: emit an audit log event."""

    logger.warning(
        "rate_limit.limit_reached",
        extra={
            "key_hash": hash_for_logging(key),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )


class RateLimiterRegistry:
    """Collection of named ``ApiRateLimiter`` instances."""

    def __init__(self, limiters: dict[str, ApiRateLimiter]) -> None:
        if GENERAL not in limiters:
            raise ValueError("registry requires a 'general' limiter")
        self._limiters = dict(limiters)

    def __iter__(self) -> Iterator[ApiRateLimiter]:
        return iter(self._limiters.values())

    def __contains__(self, name: object) -> bool:
        return name in self._limiters

    def names(self) -> list[str]:
        return list(self._limiters)

    def get(self, name: str) -> ApiRateLimiter:
        """Return the limiter registered under ``name``.

        Raises:
            KeyError: If no limiter has that name.
        """
        try:
            return self._limiters[name]
        except KeyError:
            raise KeyError(f"unknown rate limit preset: {name}") from None

    def for_path(self, path: str) -> ApiRateLimiter:
        """Pick the limiter for ``path``, falling back to ``general``."""
        return self._limiters.get(resolve_preset(path)) or self._limiters[GENERAL]

    def cleanup_all(self) -> int:
        """Run cleanup on every limiter. Returns the total keys removed."""
        return sum(limiter.cleanup() for limiter in self._limiters.values())

    def stats(self) -> list[dict[str, int | str]]:
        return [limiter.stats() for limiter in self._limiters.values()]

    def top_blocked_clients(self, limit: int) -> list[dict[str, Any]]:
        """Most blocked clients across presets, by rejected request count."""
        rows = [row for limiter in self._limiters.values() for row in limiter.top_blocked_clients(limit)]
        rows.sort(key=lambda row: (-row["blocked_count"], -row["total_requests"]))
        return rows[:limit]

    def top_endpoints(self, limit: int) -> list[dict[str, Any]]:
        """Busiest request paths across presets.

        A path reached through more than one preset (a route-level override
        on top of the app-wide middleware) has its counts summed.
        """
        totals: dict[str, list[int]] = {}
        for limiter in self._limiters.values():
            for path, (requests, blocked) in limiter.endpoint_counts().items():
                entry = totals.setdefault(path, [0, 0])
                entry[0] += requests
                entry[1] += blocked
        rows = [
            {"endpoint": path, "request_count": requests, "blocked_count": blocked}
            for path, (requests, blocked) in totals.items()
        ]
        rows.sort(key=lambda row: (-row["request_count"], -row["blocked_count"], row["endpoint"]))
        return rows[:limit]


def build_registry(
    rate_limit_settings: RateLimitSettings,
    *,
    clock: Callable[[], float] = epoch_ms,
) -> RateLimiterRegistry:
    """Create a registry with one limiter per configured preset.

    Args:
        rate_limit_settings: Preset windows and limits.
        clock: Millisecond time source shared by all limiters.

    Returns:
        RateLimiterRegistry with every preset in ``PRESET_NAMES``.
    """

    limiters: dict[str, ApiRateLimiter] = {}
    for name in PRESET_NAMES:
        config = RateLimitConfig(
            window_ms=getattr(rate_limit_settings, f"{name}_window_ms"),
            max_requests=getattr(rate_limit_settings, f"{name}_max_requests"),
            on_limit_reached=log_limit_reached,
        )
        limiters[name] = ApiRateLimiter(
            name,
            config,
            clock=clock,
            max_tracked=rate_limit_settings.stats_max_tracked,
        )

    logger.info(
        "rate_limit.registry_built",
        extra={
            "presets": {
                name: f"{limiter.default_config.max_requests}/{limiter.default_config.window_ms}ms"
                for name, limiter in limiters.items()
            },
        },
    )
    return RateLimiterRegistry(limiters)
