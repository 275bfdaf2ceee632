from __future__ import annotations

from fastapi.testclient import TestClient


def test_preserves_incoming_request_id_header(client: TestClient):
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client: TestClient):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_health_lists_presets(client: TestClient):
    assert client.get("/health").json() == {
        "status": "ok",
        "rate_limit_presets": ["general", "auth", "sensitive", "upload", "admin", "public"],
    }


def test_lifespan_starts_and_stops_sweeper(app):
    with TestClient(app):
        assert app.state.cleanup_sweeper.is_running
    assert not app.state.cleanup_sweeper.is_running
