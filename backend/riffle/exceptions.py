"""
Riffle Backend — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for the journal API and the offline client.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) turn the API-side
       errors into JSON error bodies. The offline-side errors never reach
       HTTP; the sync engine attaches them to individual failed entries.

Exception Hierarchy:
    RiffleError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── QuotaExceededError       → 403 Forbidden (free tier limit)
    ├── NotFoundError            → 404 Not Found
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── DatabaseError            → 500 Internal Server Error
    │
    │   Offline client (never mapped to HTTP)
    ├── StorageFailure           local queue unavailable or exhausted
    ├── NetworkFailure           remote call did not complete
    └── RemoteRejection          remote answered with a non-2xx status
"""

from typing import Any, Dict, Optional


class RiffleError(Exception):
    """
    Base exception for all Riffle application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(RiffleError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems are still answered by
    FastAPI with 422 before any service code runs.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(RiffleError):
    """Missing, expired, or forged login token. HTTP: 401."""

    def __init__(
        self,
        message: str = "Unauthorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class QuotaExceededError(RiffleError):
    """
    Raised when a free-tier user creates more entries than the monthly allowance.

    HTTP: 403 Forbidden, body carries ``"upgrade": true`` so clients can
    offer the subscription page.
    """

    def __init__(
        self,
        limit: int = 3,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Free tier limit reached ({limit} entries/month). "
            "Upgrade to Pro for unlimited."
        )
        ctx = context or {}
        ctx["limit"] = limit
        super().__init__(message=message, context=ctx)
        self.limit = limit


class NotFoundError(RiffleError):
    """
    The journal entry does not exist, or belongs to another user.

    HTTP: 404 for both cases.
    """

    def __init__(
        self,
        entry_id: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = dict(context or {}, entry_id=entry_id)
        super().__init__(message="Entry not found", context=ctx)
        self.entry_id = entry_id


class DatabaseError(RiffleError):
    """
    Raised when database operations fail unexpectedly.

    HTTP: 500. The message returned to the client is always generic;
    the SQL error itself is only logged.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(RiffleError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP: 429 Too Many Requests, with a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Offline client errors
# ══════════════════════════════════════════════════════════════════════════


class StorageFailure(RiffleError):
    """
    The on-device store could not complete an operation.

    When: disk full, database file locked or unreadable, constraint broken
    mid-transaction. Callers degrade to "entry not saved" and warn the user.
    """

    def __init__(
        self,
        message: str = "Local storage is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NetworkFailure(RiffleError):
    """
    A remote call did not complete: offline, DNS, refused, timed out.

    The entry being submitted stays queued.
    """

    def __init__(
        self,
        message: str = "Network error",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RemoteRejection(RiffleError):
    """
    The journal API was reachable but answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the API
        body:        Decoded JSON error body (empty dict when not JSON)

    ``is_permanent`` is True for statuses that will fail the same way on
    every retry (bad input, missing resource). Auth and quota rejections
    are not permanent: a fresh login or a new month changes the outcome.
    """

    PERMANENT_STATUSES = frozenset({400, 404, 409, 422})

    def __init__(
        self,
        message: str = "Request rejected by server",
        status_code: int = 500,
        body: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.body = body or {}

    @property
    def is_permanent(self) -> bool:
        return self.status_code in self.PERMANENT_STATUSES
