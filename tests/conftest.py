"""Pytest configuration and fixtures shared across all test modules."""

import os

# Set before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "admin-key-123,admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from license_portal.core.app_factory import create_app
from license_portal.core.config import RateLimitSettings
from license_portal.services.rate_limit_registry import build_registry


class FakeClock:
    """Deterministic millisecond clock for window tests."""

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.start = start
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, ms: float) -> None:
        self.current += ms

    def at(self, offset_ms: float) -> None:
        """Move to ``start + offset_ms``."""
        self.current = self.start + offset_ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock):
    return build_registry(
        RateLimitSettings(
            general_max_requests=3,
            auth_max_requests=2,
            admin_max_requests=50,
        ),
        clock=clock,
    )


@pytest.fixture
def app(registry):
    return create_app(registry)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": "admin-key-123"}
