"""
Riffle Backend — Rate Limiting Middleware
===========================================

What:  Per-client sliding-window limit on API requests.
How:   Keeps the timestamps of each client's recent requests in memory;
       a request that would exceed RATE_LIMIT_REQUESTS within
       RATE_LIMIT_WINDOW seconds gets 429 with a Retry-After header.

Client key:
    The login token when one is sent (so a whole household behind one NAT
    is not throttled together), otherwise the client IP.

The offline sync engine treats 429 as transient: the entry stays queued
and is retried on the next trigger.

Single-process only: each worker keeps its own counters.
"""

import hashlib
import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from riffle.config import settings
from riffle.exceptions import RateLimitExceededError
from riffle.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    auth = request.headers.get("Authorization") or request.cookies.get(settings.auth_cookie_name)
    if auth:
        return "token:" + hashlib.sha256(auth.encode()).hexdigest()[:16]
    return "ip:" + (request.client.host if request.client else "unknown")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window limiter."""

    EXCLUDED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

    # Forget idle clients after this many recorded requests
    SWEEP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._since_sweep = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = client_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window
        hits = self._hits[key]
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= settings.rate_limit_requests:
            retry_after = int(hits[0] + settings.rate_limit_window - now) + 1
            exc = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds",
                key, len(hits), settings.rate_limit_window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": exc.message,
                    "code": "rate_limit_exceeded",
                    "details": exc.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        self._since_sweep += 1
        if self._since_sweep >= self.SWEEP_EVERY:
            self._sweep(window_start)

        return await call_next(request)

    def _sweep(self, window_start: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in idle:
            del self._hits[key]
        self._since_sweep = 0
        if idle:
            logger.debug("Dropped %d idle rate-limit clients", len(idle))
