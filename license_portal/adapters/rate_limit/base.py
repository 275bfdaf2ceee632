"""Rate limiter interfaces and value types.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped later (e.g., Redis) with minimal
changes.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response


KeyGenerator = Callable[["Request"], str]
LimitedHandler = Callable[["Request", "Response"], "Response | Awaitable[Response]"]
LimitReachedHook = Callable[["Request", str], Any]


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration for one call site.

    Attributes:
        window_ms: Sliding window length in milliseconds.
        max_requests: Maximum requests counted inside the window.
        key_generator: Optional request -> key function overriding the
            default IP/user-agent/path key.
        skip_successful_requests: Do not count requests later marked successful.
        skip_failed_requests: Do not count requests later marked failed.
        handler: Optional builder for the response sent when limited.
        on_limit_reached: Optional hook called with (request, key) when limited.

    Raises:
        ValueError: If window_ms or max_requests is not a positive integer.
    """

    window_ms: int
    max_requests: int
    key_generator: KeyGenerator | None = None
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    handler: LimitedHandler | None = None
    on_limit_reached: LimitReachedHook | None = None

    def __post_init__(self) -> None:
        if isinstance(self.window_ms, bool) or not isinstance(self.window_ms, int) or self.window_ms < 1:
            raise ValueError("window_ms must be a positive integer")
        if isinstance(self.max_requests, bool) or not isinstance(self.max_requests, int) or self.max_requests < 1:
            raise ValueError("max_requests must be a positive integer")

    def merged(self, **overrides: Any) -> "RateLimitConfig":
        """Return a validated copy with the given fields replaced.

        Every passed field is applied, including None, so an override can
        clear ``key_generator``, ``handler`` or ``on_limit_reached``. A None
        window or limit fails validation like any other invalid value.
        """
        if not overrides:
            return self
        return replace(self, **overrides)


@dataclass
class RateLimitRecord:
    """One observed request attempt; ``success`` is backfilled later."""

    timestamp_ms: float
    success: bool | None = None


@dataclass(frozen=True)
class RateLimitInfo:
    """Read-only view of a key's quota, derived on demand."""

    remaining: int
    reset_at: datetime
    total: int


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        is_limited: Whether the request must be rejected.
        limit: Max requests per window.
        remaining: Remaining requests in the window (0 when limited).
        reset_at: UTC instant advertised as the window reset.
        retry_after_seconds: Seconds until reset_at, rounded up.
    """

    is_limited: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after_seconds: int

    @property
    def allowed(self) -> bool:
        return not self.is_limited

    @property
    def reset_iso(self) -> str:
        """ISO-8601 UTC timestamp with millisecond precision and ``Z`` suffix."""
        return self.reset_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ms_to_datetime(epoch_ms: float) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


def seconds_until(target_ms: float, now_ms: float) -> int:
    return max(0, int(math.ceil((target_ms - now_ms) / 1000)))


class AbstractRateLimiter(ABC):
    """Interface for keyed rate limit stores."""

    @abstractmethod
    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Decide whether a request under ``key`` is allowed and record it.

        Args:
            key: Partition identifier (e.g., IP + user-agent + path).
            config: Window and limit to enforce.

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    @abstractmethod
    def record_outcome(self, key: str, success: bool) -> None:
        """Mark the most recent request under ``key`` as succeeded or failed."""
        raise NotImplementedError

    @abstractmethod
    def get_info(self, key: str) -> RateLimitInfo | None:
        """Return current quota information for ``key`` or None if untracked."""
        raise NotImplementedError

    @abstractmethod
    def cleanup(self) -> int:
        """Evict stale keys. Returns the number of keys removed."""
        raise NotImplementedError

    @abstractmethod
    def active_keys(self) -> list[str]:
        """Return the keys currently tracked."""
        raise NotImplementedError
