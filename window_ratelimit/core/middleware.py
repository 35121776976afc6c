"""HTTP middleware for request ID propagation.

Every request/response pair carries a correlation id so that limiter log
lines (allowed, exceeded, key_unavailable) can be tied back to a request.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from window_ratelimit.core.config import settings
from window_ratelimit.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Read or generate a request id and echo it on the response.

    The id from the configured header (``X-Request-ID`` by default) is reused
    when present, otherwise a UUID4 is generated. It is stored in contextvars
    for the duration of the request and cleared afterwards.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with the request id and an
            ``X-Request-Duration-ms`` header added.
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
