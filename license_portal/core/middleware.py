"""Request correlation middleware.

Accepts an incoming request id header (``LOG_REQUEST_ID_HEADER``, default
``X-Request-ID``) or generates a UUID, exposes it to logging through
contextvars, and echoes it back with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from license_portal.core.config import settings
from license_portal.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a request id and add ``X-Request-Duration-ms``.

    Registered after the rate limit middleware so it runs outermost and
    rejected (429) responses carry a request id too.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
