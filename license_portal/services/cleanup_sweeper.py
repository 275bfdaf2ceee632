"""Background cleanup of stale rate limit keys.

Bounds memory used by the in-process stores when many distinct clients
appear. The sweeper runs on a fixed cadence independent of request volume
and is started/stopped by the application lifespan.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from license_portal.services.rate_limit_registry import RateLimiterRegistry

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Periodically evicts empty keys from every limiter in a registry."""

    def __init__(self, registry: RateLimiterRegistry, interval_seconds: float = 300.0) -> None:
        """Initialize the sweeper.

        Args:
            registry: Limiters to sweep.
            interval_seconds: Time between sweeps.

        Raises:
            ValueError: If interval_seconds is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._registry = registry
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.sweeps = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        """Run one cleanup pass over all limiters.

        Returns:
            Number of keys removed.
        """
        removed = self._registry.cleanup_all()
        self.sweeps += 1
        logger.debug(
            "rate_limit.cleanup",
            extra={
                "removed_keys": removed,
                "sweeps": self.sweeps,
            },
        )
        return removed

    async def start(self) -> None:
        """Start the background sweep task (no-op if already running)."""
        if self._task is not None:
            logger.debug("Cleanup sweeper already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "rate_limit.sweeper_started",
            extra={"interval_s": self._interval},
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Cleanup sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("rate_limit.sweeper_stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                self.sweep()
            except Exception as exc:
                logger.error(
                    "rate_limit.cleanup_failed",
                    extra={
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
