"""Tests for the background cleanup sweeper."""

import asyncio
from unittest.mock import Mock

import pytest

from license_portal.services.cleanup_sweeper import CleanupSweeper


def test_sweep_removes_expired_keys(registry, clock) -> None:
    sweeper = CleanupSweeper(registry, interval_seconds=60)
    general = registry.get("general")
    general.check_rate_limit("stale")

    assert sweeper.sweep() == 0
    clock.advance(60_000)
    assert sweeper.sweep() == 1
    assert general.store.active_keys() == []
    assert sweeper.sweeps == 2

    # A swept key starts over with a full quota
    assert general.check_rate_limit("stale").remaining == general.default_config.max_requests - 1


def test_invalid_interval() -> None:
    with pytest.raises(ValueError):
        CleanupSweeper(Mock(), interval_seconds=0)


@pytest.mark.asyncio
async def test_start_runs_periodically_and_stop_halts() -> None:
    registry = Mock()
    registry.cleanup_all.return_value = 0
    sweeper = CleanupSweeper(registry, interval_seconds=0.01)

    await sweeper.start()
    assert sweeper.is_running
    await sweeper.start()  # second start is a no-op
    await asyncio.sleep(0.1)
    await sweeper.stop()

    assert not sweeper.is_running
    calls = registry.cleanup_all.call_count
    assert calls >= 1
    await asyncio.sleep(0.05)
    assert registry.cleanup_all.call_count == calls


@pytest.mark.asyncio
async def test_failing_sweep_keeps_loop_alive() -> None:
    registry = Mock()
    registry.cleanup_all.side_effect = RuntimeError("boom")
    sweeper = CleanupSweeper(registry, interval_seconds=0.01)

    await sweeper.start()
    await asyncio.sleep(0.1)
    assert sweeper.is_running
    await sweeper.stop()

    assert registry.cleanup_all.call_count >= 2


@pytest.mark.asyncio
async def test_stop_without_start_is_noop() -> None:
    sweeper = CleanupSweeper(Mock(), interval_seconds=1)
    await sweeper.stop()
    assert not sweeper.is_running
