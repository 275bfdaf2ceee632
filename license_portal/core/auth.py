"""Admin API key authentication.

Admin endpoints (rate limit statistics) are protected by a static list of
keys configured via ``APP_ADMIN_API_KEYS``. User authentication flows live
elsewhere in the platform.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header

from license_portal.core.config import settings
from license_portal.core.errors import AuthenticationAppError
from license_portal.core.logging import hash_for_logging

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_admin_key(provided_key: str | None) -> None:
    """Validate an admin key against the configured keys.

    Args:
        provided_key: Value of the X-API-Key header, if any.

    Raises:
        AuthenticationAppError: If the key is missing, unknown, or no keys
            are configured while auth is required.
    """
    if not settings.app.admin_api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.admin_api_keys)
    if not valid_keys:
        logger.error(
            "admin_auth_failed",
            extra={"reason": "admin_api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="admin_api_keys_not_configured",
            message="Admin authentication is enabled but no admin keys are configured",
            details={"hint": "Set APP_ADMIN_API_KEYS or disable with APP_ADMIN_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("admin_auth_failed", extra={"reason": "missing_api_key"})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if not any(hmac.compare_digest(provided_key.encode(), key.encode()) for key in valid_keys):
        logger.warning(
            "admin_auth_failed",
            extra={"reason": "invalid_api_key", "key_hash": hash_for_logging(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_admin_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding admin routes.

    Usage:
        @router.get("/stats", dependencies=[Depends(verify_admin_key)])

    Raises:
        AuthenticationAppError: Rendered as 403 by the global handlers.
    """
    validate_admin_key(x_api_key)
    if x_api_key:
        logger.debug("admin_auth.success", extra={"key_hash": hash_for_logging(x_api_key)})
