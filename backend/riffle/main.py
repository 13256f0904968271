"""
Riffle Backend — FastAPI Application Factory
==============================================

What:  Builds the journal API the offline sync client talks to.
How:   create_app() registers middleware, exception handlers and routers.
Who:   uvicorn (`uvicorn riffle.main:app`) and the test suite.

Application Layout:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware: Request ID → Rate Limit → Logging      │
    │                                                     │
    │  Routes:                                            │
    │  ┌───────────────────────────┐ ┌─────────────────┐  │
    │  │ GET/POST/PUT/DELETE       │ │ GET /health     │  │
    │  │ /api/journal              │ │                 │  │
    │  └───────────────────────────┘ └─────────────────┘  │
    │                                                     │
    │  Errors → {"error": <message>, "code", "request_id"}│
    └─────────────────────────────────────────────────────┘

Every error body carries a human-readable `error` string. The offline
client keeps that string next to a queued entry that failed to sync.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from riffle import __version__
from riffle.config import settings
from riffle.database import dispose_engine
from riffle.exceptions import (
    AuthenticationError,
    DatabaseError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
    RiffleError,
    ValidationError,
)
from riffle.middleware.logging import RequestLoggingMiddleware
from riffle.middleware.rate_limit import RateLimitMiddleware
from riffle.middleware.request_id import RequestIDMiddleware, request_id_var
from riffle.routes import health, journal

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Root logger to stdout at LOG_LEVEL; third-party chatter kept at WARNING."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("Riffle journal API %s starting", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving /health so the misconfiguration is visible
        logger.error("Configuration error: %s", str(e))

    logger.info("Listening on http://%s:%d", settings.backend_host, settings.backend_port)

    yield

    logger.info("Riffle journal API shutting down")
    await dispose_engine()


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(
    message: str,
    code: str,
    details: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message, "code": code}
    if details:
        body["details"] = details
    body.update(extra)
    body["request_id"] = request_id_var.get("")
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to status codes and the shared error body.

        ValidationError          → 400
        RequestValidationError   → 422 (schema violations caught by FastAPI)
        AuthenticationError      → 401
        QuotaExceededError       → 403 (+ "upgrade": true)
        NotFoundError            → 404
        RateLimitExceededError   → 429 (+ Retry-After)
        DatabaseError            → 500 (generic message; details logged only)
        RiffleError / Exception  → 500
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        details = {"field": exc.field} if exc.field else None
        return JSONResponse(status_code=400, content=error_body(exc.message, "validation_error", details))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(part) for part in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
            for err in exc.errors()
        ]
        message = "Invalid request: " + "; ".join(problems) if problems else "Invalid request"
        return JSONResponse(
            status_code=422,
            content=error_body(message, "invalid_request", {"problems": problems}),
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication(request: Request, exc: AuthenticationError):
        return JSONResponse(status_code=401, content=error_body(exc.message, "unauthorized"))

    @app.exception_handler(QuotaExceededError)
    async def handle_quota(request: Request, exc: QuotaExceededError):
        return JSONResponse(
            status_code=403,
            content=error_body(exc.message, "quota_exceeded", upgrade=True),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=error_body(exc.message, "not_found"))

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=error_body(exc.message, "rate_limit_exceeded", exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""), exc.message, exc.context,
        )
        return JSONResponse(
            status_code=500,
            content=error_body("Failed to process journal request", "server_error"),
        )

    @app.exception_handler(RiffleError)
    async def handle_riffle_error(request: Request, exc: RiffleError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return JSONResponse(status_code=500, content=error_body(exc.message, "server_error"))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body("An unexpected error occurred", "internal_server_error"),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Riffle Journal API",
        description=(
            "Fly-fishing trip journal. Entries written offline on a device are "
            "replayed here by the offline sync client."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Added innermost first; the last one added runs first on a request
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(journal.router)
    app.include_router(health.router)

    return app


app = create_app()
