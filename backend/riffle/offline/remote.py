"""
Riffle Offline — Journal API Client
=====================================

What:  The two remote calls the sync subsystem needs: create one entry,
       and fetch the user's full entry list.
How:   httpx.AsyncClient. Transport problems become NetworkFailure; any
       non-2xx answer becomes RemoteRejection carrying the status code and
       the server's human-readable message.

Retry policy:
    - create_entry is never retried here. A failed entry stays queued and
      the next sync batch tries again; the Idempotency-Key header lets the
      server recognise a replay of an entry it already stored.
    - list_entries is a read, retried on NetworkFailure with tenacity
      (exponential backoff + jitter) before giving up.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic_core import to_jsonable_python
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from riffle.config import settings
from riffle.exceptions import NetworkFailure, RemoteRejection

logger = logging.getLogger(__name__)

JOURNAL_PATH = "/api/journal"
IDEMPOTENCY_HEADER = "Idempotency-Key"


def _error_message(response: httpx.Response) -> tuple[str, Dict[str, Any]]:
    """
    Pull the human-readable message out of an error response.

    Understands the journal API's {"error": "..."} body, a generic
    {"message": "..."} body, and FastAPI's {"detail": ...} validation body.
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("error") or body.get("message")
    if not message:
        detail = body.get("detail")
        if isinstance(detail, str):
            message = detail
        elif isinstance(detail, list) and detail:
            message = "Invalid entry: " + "; ".join(
                str(item.get("msg", item)) if isinstance(item, dict) else str(item)
                for item in detail
            )
    return message or f"Server responded with HTTP {response.status_code}", body


class JournalApiClient:
    """
    Authenticated client for /api/journal.

    Args:
        base_url:  API root; defaults to settings.api_base_url
        token:     login JWT sent as a bearer token
        transport: optional httpx transport (tests use MockTransport/ASGITransport)
        client:    fully configured AsyncClient to use instead of building one
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.api_timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JournalApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Calls ─────────────────────────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkFailure(
                message="Network error",
                context={"method": method, "url": url, "error_type": type(e).__name__},
            ) from e
        if not response.is_success:
            message, body = _error_message(response)
            raise RemoteRejection(
                message=message,
                status_code=response.status_code,
                body=body,
                context={"method": method, "url": url},
            )
        return response

    async def create_entry(
        self,
        payload: Mapping[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> int:
        """
        Submit one entry to the create endpoint.

        Returns:
            The server-assigned entry id.

        Raises:
            NetworkFailure: the request did not complete
            RemoteRejection: the API answered non-2xx
        """
        headers = {IDEMPOTENCY_HEADER: idempotency_key} if idempotency_key else None
        response = await self._request(
            "POST",
            JOURNAL_PATH,
            json=to_jsonable_python(dict(payload)),
            headers=headers,
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        entry_id = data.get("entryId") if isinstance(data, dict) else None
        return int(entry_id) if entry_id is not None else 0

    async def list_entries(self, page_size: int = 100) -> List[Dict[str, Any]]:
        """
        Fetch every entry of the authenticated user, following offset pages.

        The server may clamp `page_size` to a smaller limit, so paging only
        stops on an empty page and the offset advances by what was returned.
        An entry seen twice (the list shifted between pages) is kept once.

        Raises:
            NetworkFailure: still unreachable after the configured retries
            RemoteRejection: the API answered non-2xx (not retried)
        """
        entries: Dict[Any, Dict[str, Any]] = {}
        offset = 0
        while True:
            page = await self._fetch_page(page_size, offset)
            if not page:
                return list(entries.values())
            for entry in page:
                entries.setdefault(entry.get("id"), entry)
            offset += len(page)

    @retry(
        retry=retry_if_exception_type(NetworkFailure),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=settings.retry_min_wait,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _fetch_page(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET", JOURNAL_PATH, params={"limit": limit, "offset": offset}
        )
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteRejection(
                message="Server returned an unreadable entry list",
                status_code=response.status_code,
            ) from e
        entries = data.get("entries") if isinstance(data, dict) else None
        return list(entries or [])
