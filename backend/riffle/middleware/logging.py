"""
Riffle Backend — Access Logging Middleware
============================================

What:  One log line per request: method, path, status, duration, request id.
How:   Logged on the "riffle.access" logger; level follows the status class
       (5xx ERROR, 4xx WARNING, otherwise INFO).

Health probes are not logged. The offline client's connectivity probe can
hit /health every few seconds per device.

Never logged: request bodies (journal text, GPS coordinates) and the
Authorization header or auth cookie.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from riffle.middleware.request_id import request_id_var

logger = logging.getLogger("riffle.access")

QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with per-request timing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        replay = " replay" if request.headers.get("Idempotency-Key") else ""
        logger.log(
            _level_for(response.status_code),
            "%s %s %d %.1fms [%s]%s from %s",
            request.method,
            path,
            response.status_code,
            duration_ms,
            rid,
            replay,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
