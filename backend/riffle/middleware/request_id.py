"""
Riffle Backend — Request ID Middleware
========================================

What:  Tags every request with a short correlation id.
How:   Reuses the client's X-Request-ID header when present (the offline
       client may send one per sync submission), otherwise generates one.
       The id is stored in a ContextVar for loggers and error handlers and
       echoed back in the X-Request-ID response header.

Error bodies carry the same id as `request_id`, so a user reporting a
failed sync can hand support a value that matches the server log line.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns the request id and returns it in the response headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
