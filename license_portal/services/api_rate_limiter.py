"""API rate limiter: key derivation, decisions, and HTTP response shaping.

``ApiRateLimiter`` binds a default configuration to a keyed store and turns
store results into HTTP behavior:
- Limited requests get a 429 with ``Retry-After`` and ``X-RateLimit-*`` headers
- Allowed requests get ``X-RateLimit-*`` headers and proceed unchanged
- Any internal failure while deciding allows the request (fail-open)
"""

from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from license_portal.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitInfo,
    RateLimitResult,
    ms_to_datetime,
    seconds_until,
)
from license_portal.adapters.rate_limit.in_memory import (
    InMemorySlidingWindowRateLimiter,
    epoch_ms,
)
from license_portal.adapters.rate_limit.keys import generate_key
from license_portal.core.logging import hash_for_logging

logger = logging.getLogger(__name__)

RateLimitGuard = Callable[[Request, Response], Awaitable[Response]]


def build_limited_response(result: RateLimitResult) -> JSONResponse:
    """Build the standard 429 response for a limited request."""

    return JSONResponse(
        status_code=429,
        content={
            "error": "Too Many Requests",
            "message": "Rate limit exceeded",
            "retryAfter": result.retry_after_seconds,
        },
        headers={
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": result.reset_iso,
            "Retry-After": str(result.retry_after_seconds),
        },
    )


def apply_rate_limit_headers(response: Response, result: RateLimitResult) -> Response:
    """Attach quota headers to an allowed response."""

    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = result.reset_iso
    return response


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of evaluating one request.

    ``key`` is None when the decision was a fail-open fallback; there is
    then no record to backfill an outcome on.
    """

    key: str | None
    result: RateLimitResult
    config: RateLimitConfig

    @property
    def is_limited(self) -> bool:
        return self.result.is_limited


@dataclass
class _ClientCounter:
    total: int = 0
    blocked: int = 0
    last_blocked: datetime | None = None


@dataclass
class _EndpointCounter:
    requests: int = 0
    blocked: int = 0


def _trim(counters: dict[str, Any], max_tracked: int, weight: Callable[[Any], tuple]) -> None:
    """Drop the lightest entries once ``counters`` outgrows ``max_tracked``.

    Trims to three quarters of the bound so the sort is not repeated on
    every new entry.
    """
    if len(counters) <= max_tracked:
        return
    keep = max(1, max_tracked * 3 // 4)
    ranked = sorted(counters.items(), key=lambda item: weight(item[1]), reverse=True)
    counters.clear()
    counters.update(ranked[:keep])


class ApiRateLimiter:
    """Sliding-window limiter for one class of routes.

    Attributes:
        name: Preset name used in logs and stats.
        default_config: Configuration applied when a call site gives no overrides.
        max_tracked: Bound on the per-client and per-endpoint counters kept
            for the stats report.
    """

    def __init__(
        self,
        name: str,
        default_config: RateLimitConfig,
        *,
        store: AbstractRateLimiter | None = None,
        clock: Callable[[], float] = epoch_ms,
        max_tracked: int = 1000,
    ) -> None:
        self.name = name
        self.default_config = default_config
        self._clock = clock
        self._store = store or InMemorySlidingWindowRateLimiter(clock=clock)
        self._counter_lock = threading.Lock()
        self._allowed = 0
        self._blocked = 0
        self._fail_open = 0
        self.max_tracked = max_tracked
        self._clients: dict[str, _ClientCounter] = {}
        self._endpoints: dict[str, _EndpointCounter] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ApiRateLimiter(name={self.name!r}, window_ms={self.default_config.window_ms}, "
            f"max_requests={self.default_config.max_requests})"
        )

    @property
    def store(self) -> AbstractRateLimiter:
        return self._store

    def resolve_config(self, **overrides: Any) -> RateLimitConfig:
        """Merge call-site overrides into the default config."""
        return self.default_config.merged(**overrides)

    def check_rate_limit(
        self,
        key: str,
        config: RateLimitConfig | None = None,
        request: Request | None = None,
    ) -> RateLimitResult:
        """Check and record a request under ``key``.

        The request only feeds logs and the per-endpoint counters; the
        limit itself depends on the key alone.
        """

        result = self._store.check(key, config or self.default_config)
        key_hash = hash_for_logging(key)
        path = request.url.path if request is not None else None
        with self._counter_lock:
            if result.is_limited:
                self._blocked += 1
            else:
                self._allowed += 1
            self._track(key_hash, path, result.is_limited)

        if result.is_limited:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "preset": self.name,
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "retry_after_s": result.retry_after_seconds,
                    "request_path": path,
                },
            )
        return result

    def _track(self, key_hash: str, path: str | None, limited: bool) -> None:
        # Caller holds _counter_lock
        client = self._clients.get(key_hash)
        if client is None:
            client = self._clients[key_hash] = _ClientCounter()
        client.total += 1
        if limited:
            client.blocked += 1
            client.last_blocked = ms_to_datetime(self._clock())
        _trim(self._clients, self.max_tracked, lambda c: (c.blocked, c.total))

        if path is None:
            return
        endpoint = self._endpoints.get(path)
        if endpoint is None:
            endpoint = self._endpoints[path] = _EndpointCounter()
        endpoint.requests += 1
        if limited:
            endpoint.blocked += 1
        _trim(self._endpoints, self.max_tracked, lambda e: (e.requests, e.blocked))

    def _fail_open_result(self, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        reset_ms = now + config.window_ms
        return RateLimitResult(
            is_limited=False,
            limit=config.max_requests,
            remaining=config.max_requests,
            reset_at=ms_to_datetime(reset_ms),
            retry_after_seconds=seconds_until(reset_ms, now),
        )

    def evaluate(self, request: Request, config: RateLimitConfig | None = None) -> RateLimitDecision:
        """Derive the key for ``request`` and decide whether it may proceed.

        Never raises: a failing key generator or store allows the request and
        logs a warning.
        """

        config = config or self.default_config
        try:
            key = generate_key(request, config)
            result = self.check_rate_limit(key, config, request)
        except Exception as exc:
            with self._counter_lock:
                self._fail_open += 1
            logger.warning(
                "rate_limit.fail_open",
                extra={
                    "preset": self.name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "request_path": request.url.path,
                },
            )
            return RateLimitDecision(key=None, result=self._fail_open_result(config), config=config)

        return RateLimitDecision(key=key, result=result, config=config)

    async def notify_limit_reached(self, request: Request, decision: RateLimitDecision) -> None:
        """Call the config's ``on_limit_reached`` hook; hook errors are logged only."""

        hook = decision.config.on_limit_reached
        if hook is None or decision.key is None:
            return
        try:
            await _maybe_await(hook(request, decision.key))
        except Exception as exc:
            logger.warning(
                "rate_limit.hook_failed",
                extra={"preset": self.name, "error_type": type(exc).__name__},
            )

    async def limited_response(
        self,
        request: Request,
        decision: RateLimitDecision,
        response: Response | None = None,
    ) -> Response:
        """Run the limit-reached hook and build the rejection response."""

        await self.notify_limit_reached(request, decision)

        config = decision.config
        if config.handler is not None:
            return await _maybe_await(config.handler(request, response or Response()))
        return build_limited_response(decision.result)

    def middleware(self, **overrides: Any) -> RateLimitGuard:
        """Wrap this limiter as a request guard.

        The returned coroutine function takes the request and the in-flight
        response. It returns a 429 when limited; otherwise it returns the
        given response with quota headers attached.

        Args:
            **overrides: RateLimitConfig fields replacing the defaults.

        Returns:
            Async guard ``(request, response) -> response``.
        """

        config = self.resolve_config(**overrides)

        async def guard(request: Request, response: Response) -> Response:
            decision = self.evaluate(request, config)
            if decision.is_limited:
                return await self.limited_response(request, decision, response)
            return apply_rate_limit_headers(response, decision.result)

        return guard

    def record_request_outcome(self, key: str, success: bool) -> None:
        self._store.record_outcome(key, success)

    def get_rate_limit_info(self, key: str) -> RateLimitInfo | None:
        return self._store.get_info(key)

    def cleanup(self) -> int:
        return self._store.cleanup()

    def stats(self) -> dict[str, int | str]:
        """Return counters and configuration without exposing keys."""

        with self._counter_lock:
            return {
                "name": self.name,
                "window_ms": self.default_config.window_ms,
                "max_requests": self.default_config.max_requests,
                "allowed": self._allowed,
                "blocked": self._blocked,
                "fail_open": self._fail_open,
                "active_keys": len(self._store.active_keys()),
            }

    def top_blocked_clients(self, limit: int) -> list[dict[str, Any]]:
        """Clients (by key hash) with the most rejected requests, blocked ones only."""

        with self._counter_lock:
            rows = [
                {
                    "preset": self.name,
                    "key_hash": key_hash,
                    "blocked_count": counter.blocked,
                    "total_requests": counter.total,
                    "last_blocked": counter.last_blocked,
                }
                for key_hash, counter in self._clients.items()
                if counter.blocked
            ]
        rows.sort(key=lambda row: (-row["blocked_count"], -row["total_requests"]))
        return rows[:limit]

    def endpoint_counts(self) -> dict[str, tuple[int, int]]:
        """Return ``{path: (requests, blocked)}`` for the tracked paths."""

        with self._counter_lock:
            return {path: (c.requests, c.blocked) for path, c in self._endpoints.items()}
