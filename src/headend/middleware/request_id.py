"""Request correlation and HTTP accounting middleware.

Every request gets an id (client-supplied X-Request-ID or a fresh UUID4),
stored on `request.state.request_id` and echoed in the response header.
The same middleware logs one line per request and counts it in Prometheus
under the matched route template, so `/api/streams/{job_id}/start` is one
series no matter how many jobs exist.

Logging Strategy:
    DEBUG - Client-provided ids
    INFO  - Completed requests (2xx/3xx) with duration
    WARN  - Client errors (4xx)
    ERROR - Server errors (5xx), unhandled exceptions
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, Final

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..metrics import track_http_request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER: Final[str] = "X-Request-ID"
UNMATCHED_ROUTE: Final[str] = "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request id, log the request and count it.

    Usage:
        >>> app.add_middleware(RequestIDMiddleware)
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(self.header_name)
        if request_id:
            logger.debug(f"Using client-provided request ID: {request_id}")
        else:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(
                f"{request.method} {request.url.path} failed after {elapsed_ms:.2f}ms: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            track_http_request(request.method, route_template(request), 500)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[self.header_name] = request_id
        track_http_request(request.method, route_template(request), response.status_code)

        code = response.status_code
        level = logging.ERROR if code >= 500 else logging.WARNING if code >= 400 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} {code} ({elapsed_ms:.2f}ms)",
            extra={"request_id": request_id, "status_code": code, "duration_ms": round(elapsed_ms, 2)}
        )
        return response


def route_template(request: Request) -> str:
    """Matched route path (e.g. /api/streams/{job_id}/start), or "unmatched"."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def get_request_id(request: Request) -> str | None:
    """Request id set by the middleware, or None when it is not installed."""
    return getattr(request.state, "request_id", None)
