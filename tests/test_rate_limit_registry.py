"""Tests for preset construction and path dispatch."""

import pytest

from license_portal.adapters.rate_limit.base import RateLimitConfig
from license_portal.core.config import RateLimitSettings
from license_portal.services.api_rate_limiter import ApiRateLimiter
from license_portal.services.rate_limit_registry import (
    PRESET_NAMES,
    RateLimiterRegistry,
    build_registry,
    log_limit_reached,
    resolve_preset,
)


@pytest.mark.parametrize(
    ("path", "preset"),
    [
        ("/api/auth/login", "auth"),
        ("/api/auth/reset-password", "auth"),
        ("/api/users/forgot-password", "sensitive"),
        ("/api/account/reset-password", "sensitive"),
        ("/api/admin/users", "admin"),
        ("/api/admin/rate-limit/stats", "admin"),
        ("/api/files/upload", "upload"),
        ("/api/public/tools", "public"),
        ("/api/licenses", "general"),
        ("/", "general"),
    ],
)
def test_resolve_preset(path: str, preset: str) -> None:
    assert resolve_preset(path) == preset


def test_default_presets_match_documented_values() -> None:
    registry = build_registry(RateLimitSettings())

    expected = {
        "general": (60_000, 100),
        "auth": (60_000, 5),
        "sensitive": (3_600_000, 10),
        "upload": (60_000, 5),
        "admin": (60_000, 30),
        "public": (3_600_000, 1000),
    }
    assert registry.names() == list(PRESET_NAMES)
    for name, (window_ms, max_requests) in expected.items():
        config = registry.get(name).default_config
        assert (config.window_ms, config.max_requests) == (window_ms, max_requests)
        assert config.on_limit_reached is log_limit_reached


def test_settings_override_presets(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_AUTH_MAX_REQUESTS", "7")
    monkeypatch.setenv("RATE_LIMIT_AUTH_WINDOW_MS", "1000")

    registry = build_registry(RateLimitSettings())

    config = registry.get("auth").default_config
    assert (config.window_ms, config.max_requests) == (1000, 7)


def test_invalid_settings_rejected(monkeypatch) -> None:
    from pydantic import ValidationError

    monkeypatch.setenv("RATE_LIMIT_GENERAL_MAX_REQUESTS", "0")
    with pytest.raises(ValidationError):
        RateLimitSettings()


def test_for_path_and_unknown_preset(registry) -> None:
    assert registry.for_path("/api/auth/login").name == "auth"
    assert registry.for_path("/anything").name == "general"
    assert "admin" in registry
    with pytest.raises(KeyError):
        registry.get("missing")


def test_for_path_falls_back_when_preset_not_registered(clock) -> None:
    general = ApiRateLimiter("general", RateLimitConfig(window_ms=1_000, max_requests=1), clock=clock)
    registry = RateLimiterRegistry({"general": general})

    assert registry.for_path("/api/auth/login") is general


def test_registry_requires_general() -> None:
    with pytest.raises(ValueError):
        RateLimiterRegistry({})


def test_registries_are_isolated(clock) -> None:
    first = build_registry(RateLimitSettings(general_max_requests=1), clock=clock)
    second = build_registry(RateLimitSettings(general_max_requests=1), clock=clock)

    first.get("general").check_rate_limit("k")
    assert first.get("general").check_rate_limit("k").is_limited is True
    assert second.get("general").check_rate_limit("k").is_limited is False


def test_cleanup_all_and_stats(registry, clock) -> None:
    registry.get("general").check_rate_limit("a")
    registry.get("auth").check_rate_limit("b")

    stats = {s["name"]: s for s in registry.stats()}
    assert stats["general"]["active_keys"] == 1
    assert stats["auth"]["allowed"] == 1

    clock.advance(60_000)
    assert registry.cleanup_all() == 2
    assert all(s["active_keys"] == 0 for s in registry.stats())
