"""Integration tests for rate limiting through the FastAPI app."""

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from license_portal.adapters.rate_limit.keys import user_key_generator
from license_portal.core.config import settings
from license_portal.core.exception_handlers import setup_exception_handlers
from license_portal.core.rate_limit import enforce_rate_limit


@pytest.fixture
def app(app):
    @app.get("/api/licenses")
    def list_licenses() -> dict:
        return {"licenses": []}

    @app.get("/api/credits/fail")
    def failing() -> dict:
        raise HTTPException(status_code=402, detail="insufficient credits")

    @app.post("/api/auth/login")
    def login() -> dict:
        return {"token": "t"}

    return app


def test_allowed_requests_carry_quota_headers(client: TestClient) -> None:
    remaining = []
    for _ in range(3):
        resp = client.get("/api/licenses")
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "3"
        remaining.append(resp.headers["X-RateLimit-Remaining"])
        assert resp.headers["X-RateLimit-Reset"].endswith("Z")

    assert remaining == ["2", "1", "0"]


def test_limited_request_gets_429_and_skips_handler(client: TestClient, clock) -> None:
    for _ in range(3):
        client.get("/api/licenses")

    clock.advance(1_000)
    resp = client.get("/api/licenses")

    assert resp.status_code == 429
    assert resp.json() == {
        "error": "Too Many Requests",
        "message": "Rate limit exceeded",
        "retryAfter": 60,
    }
    assert resp.headers["Retry-After"] == "60"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.headers["X-Request-ID"]


def test_recovers_after_window(client: TestClient, clock) -> None:
    for _ in range(3):
        client.get("/api/licenses")
    assert client.get("/api/licenses").status_code == 429

    clock.advance(60_001)
    assert client.get("/api/licenses").status_code == 200


def test_preset_chosen_by_path(client: TestClient) -> None:
    assert client.post("/api/auth/login").headers["X-RateLimit-Limit"] == "2"
    client.post("/api/auth/login")
    assert client.post("/api/auth/login").status_code == 429

    # Other routes are unaffected
    assert client.get("/api/licenses").status_code == 200


def test_keys_isolated_by_client(client: TestClient) -> None:
    for _ in range(3):
        client.get("/api/licenses", headers={"X-Forwarded-For": "1.1.1.1"})
    assert client.get("/api/licenses", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429

    resp = client.get("/api/licenses", headers={"X-Forwarded-For": "2.2.2.2"})
    assert resp.status_code == 200
    assert resp.headers["X-RateLimit-Remaining"] == "2"


def test_outcome_recorded_after_handler(client: TestClient, registry) -> None:
    resp = client.get("/api/credits/fail")
    assert resp.status_code == 402

    general = registry.get("general")
    (key,) = general.store.active_keys()
    assert general.store._stores[key].requests[-1].success is False


def test_health_is_exempt(client: TestClient) -> None:
    for _ in range(10):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers


def test_disabled_rate_limiting(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "enabled", False)
    for _ in range(10):
        resp = client.get("/api/licenses")
        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers


def test_headers_can_be_disabled(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "include_headers", False)
    resp = client.get("/api/licenses")
    assert resp.status_code == 200
    assert "X-RateLimit-Remaining" not in resp.headers


def test_limit_reached_is_logged(client: TestClient, caplog) -> None:
    for _ in range(3):
        client.get("/api/licenses")
    with caplog.at_level("WARNING"):
        client.get("/api/licenses")
    assert "rate_limit.limit_reached" in caplog.text


class TestRouteDependency:
    @pytest.fixture
    def dep_client(self, registry):
        app = FastAPI()
        app.state.rate_limiters = registry
        setup_exception_handlers(app)

        @app.post(
            "/licenses/activate",
            dependencies=[Depends(enforce_rate_limit("auth", key_generator=user_key_generator))],
        )
        def activate() -> dict:
            return {"activated": True}

        return TestClient(app)

    def test_dependency_limits_per_user(self, dep_client: TestClient) -> None:
        headers = {"X-User-ID": "u1"}
        first = dep_client.post("/licenses/activate", headers=headers)
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "1"

        dep_client.post("/licenses/activate", headers=headers)
        limited = dep_client.post("/licenses/activate", headers=headers)
        assert limited.status_code == 429
        assert limited.json()["error"] == "Too Many Requests"
        assert limited.headers["Retry-After"] == "60"

        other = dep_client.post("/licenses/activate", headers={"X-User-ID": "u2"})
        assert other.status_code == 200
