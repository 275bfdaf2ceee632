"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError -> 429 with the standard rate limit body/headers
- AuthenticationAppError -> 403
- Other AppError subclasses -> 400
- Unexpected Exception -> generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from license_portal.core.errors import AppError, AuthenticationAppError, RateLimitExceededError
from license_portal.core.logging import get_request_id
from license_portal.services.api_rate_limiter import build_limited_response

logger = logging.getLogger(__name__)


async def rate_limit_error_handler(request: Request, exc: RateLimitExceededError) -> Response:
    """Render a route-level rate limit rejection.

    Uses the same body and headers as the rate limit middleware so clients
    see one 429 shape regardless of where the limit was enforced.
    """
    if exc.result is None:
        return JSONResponse(
            status_code=429,
            content={"error": "Too Many Requests", "message": exc.message},
        )
    return build_limited_response(exc.result)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 403 if isinstance(exc, AuthenticationAppError) else 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure for debugging while returning a generic message, so no
    stack traces or internal details reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    RateLimitExceededError handler wins over the AppError one.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_error_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
