"""
Riffle Backend — Journal Route Handlers
=========================================

What:  GET/POST/PUT/DELETE /api/journal.
How:   Thin handlers: read query/body/headers, resolve the caller from the
       login token, delegate to JournalService.
Who:   The web app, and the offline sync engine (POST while draining its
       queue, GET when refreshing its snapshot cache).

Endpoint summary:
    GET    /api/journal                 caller's entries ({"entries": [...]})
    GET    /api/journal?id=n            one entry       ({"entry": {...}|null})
    GET    /api/journal?public=true     community feed  (no login needed)
    POST   /api/journal                 create          ({"success", "entryId"})
    PUT    /api/journal                 update (body carries id)
    DELETE /api/journal?id=n            delete
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from riffle.config import settings
from riffle.database import get_db_session
from riffle.exceptions import AuthenticationError, ValidationError
from riffle.schemas.journal import (
    ErrorResponse,
    JournalCreateResponse,
    JournalEntryCreate,
    JournalEntryDetail,
    JournalEntryUpdate,
    JournalListResponse,
    SuccessResponse,
)
from riffle.services.auth_service import CurrentUser, get_current_user, get_optional_user
from riffle.services.journal_service import journal_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Journal"])

PUBLIC_DEFAULT_PAGE_SIZE = 20

_errors = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Missing or invalid login token", "model": ErrorResponse},
    500: {"description": "Server error", "model": ErrorResponse},
}


def _page_size(limit: Optional[int], default: int) -> int:
    return min(limit or default, settings.journal_max_page_size)


@router.get(
    "/journal",
    response_model=Union[JournalListResponse, JournalEntryDetail],
    responses=_errors,
    summary="List journal entries",
)
async def list_journal(
    public: bool = Query(default=False, description="Return the public community feed"),
    id: Optional[int] = Query(default=None, description="Return this single entry"),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> Union[JournalListResponse, JournalEntryDetail]:
    if public:
        entries = await journal_service.list_public_entries(
            db, limit=_page_size(limit, PUBLIC_DEFAULT_PAGE_SIZE), offset=offset
        )
        return JournalListResponse(entries=entries)

    # Only the public feed is readable without a login
    if user is None:
        raise AuthenticationError(context={"reason": "no token"})

    if id is not None:
        return JournalEntryDetail(entry=await journal_service.get_entry(db, user.id, id))

    entries = await journal_service.list_entries(
        db,
        user.id,
        limit=_page_size(limit, settings.journal_default_page_size),
        offset=offset,
    )
    return JournalListResponse(entries=entries)


@router.post(
    "/journal",
    response_model=JournalCreateResponse,
    responses={
        **_errors,
        403: {"description": "Free tier monthly limit reached", "model": ErrorResponse},
    },
    summary="Create a journal entry",
    description=(
        "Creates an entry for the logged-in user. Send an Idempotency-Key header "
        "to make retries safe: a key that was already used returns the original "
        "entry id with duplicate=true."
    ),
)
async def create_journal_entry(
    data: JournalEntryCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=128),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> JournalCreateResponse:
    entry_id, duplicate = await journal_service.create_entry(
        db, user, data, idempotency_key=idempotency_key
    )
    return JournalCreateResponse(entry_id=entry_id, duplicate=duplicate)


@router.put(
    "/journal",
    response_model=SuccessResponse,
    responses={**_errors, 404: {"description": "Entry not found", "model": ErrorResponse}},
    summary="Update a journal entry",
)
async def update_journal_entry(
    data: JournalEntryUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    await journal_service.update_entry(db, user.id, data)
    return SuccessResponse()


@router.delete(
    "/journal",
    response_model=SuccessResponse,
    responses=_errors,
    summary="Delete a journal entry",
)
async def delete_journal_entry(
    id: Optional[int] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    if id is None:
        raise ValidationError(message="Entry ID required", field="id")
    await journal_service.delete_entry(db, user.id, id)
    return SuccessResponse()
