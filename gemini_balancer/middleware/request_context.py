"""Per-request correlation IDs and access logging."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from gemini_balancer.logging import reset_request_id, set_request_id

REQUEST_ID_HEADER = "x-request-id"

logger = logging.getLogger("gateway.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with one ID and echo it back to the caller."""

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s -> %s",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "event": "request_done",
                    "status_code": response.status_code,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
        finally:
            reset_request_id(token)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response
