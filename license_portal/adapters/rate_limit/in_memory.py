"""In-memory sliding-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from license_portal.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitInfo,
    RateLimitRecord,
    RateLimitResult,
    ms_to_datetime,
    seconds_until,
)


def epoch_ms() -> float:
    """Current UNIX time in milliseconds."""
    return time.time() * 1000


@dataclass
class _KeyedStore:
    config: RateLimitConfig
    requests: deque[RateLimitRecord] = field(default_factory=deque)


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter keeping a log of request timestamps per key.

    Only requests newer than ``now - window_ms`` count toward the limit.
    Records are appended in arrival order, so pruning pops from the left of
    each key's deque instead of rebuilding the whole sequence.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self, *, clock: Callable[[], float] = epoch_ms) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            clock: Time source returning UNIX time in milliseconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._stores: dict[str, _KeyedStore] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._stores)

    @staticmethod
    def _prune(store: _KeyedStore, window_start: float) -> None:
        requests = store.requests
        while requests and requests[0].timestamp_ms <= window_start:
            requests.popleft()

    @staticmethod
    def _count(store: _KeyedStore, config: RateLimitConfig) -> int:
        count = 0
        for record in store.requests:
            if config.skip_successful_requests and record.success is True:
                continue
            if config.skip_failed_requests and record.success is False:
                continue
            count += 1
        return count

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Check the sliding window for ``key`` and record the request if allowed.

        A rejected attempt is not recorded, so repeated calls against a
        saturated key never push recovery further out.

        Args:
            key: Unique identifier for rate limiting.
            config: Window and limit to enforce.

        Returns:
            RateLimitResult with the decision and quota metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            window_start = now - config.window_ms
            reset_ms = now + config.window_ms

            store = self._stores.get(key)
            if store is None:
                store = _KeyedStore(config=config)
                self._stores[key] = store
            else:
                store.config = config

            self._prune(store, window_start)
            count = self._count(store, config)

            if count >= config.max_requests:
                return RateLimitResult(
                    is_limited=True,
                    limit=config.max_requests,
                    remaining=0,
                    reset_at=ms_to_datetime(reset_ms),
                    retry_after_seconds=seconds_until(reset_ms, now),
                )

            store.requests.append(RateLimitRecord(timestamp_ms=now))
            return RateLimitResult(
                is_limited=False,
                limit=config.max_requests,
                remaining=max(0, config.max_requests - count - 1),
                reset_at=ms_to_datetime(reset_ms),
                retry_after_seconds=seconds_until(reset_ms, now),
            )

    def record_outcome(self, key: str, success: bool) -> None:
        with self._lock:
            store = self._stores.get(key)
            if store is not None and store.requests:
                store.requests[-1].success = success

    def get_info(self, key: str) -> RateLimitInfo | None:
        with self._lock:
            store = self._stores.get(key)
            if store is None:
                return None

            now = self._clock()
            config = store.config
            self._prune(store, now - config.window_ms)
            count = self._count(store, config)
            return RateLimitInfo(
                remaining=max(0, config.max_requests - count),
                reset_at=ms_to_datetime(now + config.window_ms),
                total=config.max_requests,
            )

    def cleanup(self) -> int:
        """Prune every key and drop the ones left without requests.

        Returns:
            Number of keys removed.
        """
        removed = 0
        with self._lock:
            now = self._clock()
            for key in list(self._stores):
                store = self._stores[key]
                self._prune(store, now - store.config.window_ms)
                if not store.requests:
                    del self._stores[key]
                    removed += 1
        return removed

    def active_keys(self) -> list[str]:
        with self._lock:
            return list(self._stores)
