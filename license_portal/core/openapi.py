"""OpenAPI customization.

Adds the admin API key security scheme (``X-API-Key``) to admin paths only,
documents the 429 response shared by every rate limited route, and adds
tags metadata.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA = [
    {
        "name": "Rate Limit",
        "description": "Administration of the in-process API rate limiter.",
    },
    {
        "name": "Health",
        "description": "Liveness checks (never rate limited).",
    },
]

TOO_MANY_REQUESTS = {
    "description": "Rate limit exceeded. Retry after the number of seconds in Retry-After.",
    "headers": {
        "Retry-After": {"schema": {"type": "integer"}},
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {"schema": {"type": "string", "format": "date-time"}},
    },
    "content": {
        "application/json": {
            "example": {
                "error": "Too Many Requests",
                "message": "Rate limit exceeded",
                "retryAfter": 60,
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with security, 429 docs and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "AdminApiKey",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(t for t in TAGS_METADATA if t["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            for operation in methods.values():
                if not isinstance(operation, dict):
                    continue
                if path.startswith("/api/admin/"):
                    operation["security"] = [{"AdminApiKey": []}]
                if path.startswith("/api/"):
                    operation.setdefault("responses", {}).setdefault("429", TOO_MANY_REQUESTS)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
