"""
Riffle Backend — Journal Request/Response Schemas
===================================================

What:  Pydantic models defining the journal API contract.
How:   FastAPI validates request bodies against these models and serializes
       responses through them; OpenAPI docs are generated from them.
Who:   Used by journal routes, JournalService, and the offline sync client
       (which posts the same payload shape it queued while offline).
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class JournalEntryFields(BaseModel):
    """
    Entry fields shared by create and update.

    Unknown keys are ignored, so an offline client replaying a queued
    record with extra bookkeeping keys still validates.
    """
    content: Optional[str] = None
    location_name: Optional[str] = Field(default=None, max_length=200)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    river_name: Optional[str] = Field(default=None, max_length=200)
    water_conditions: Optional[str] = None
    weather: Optional[str] = Field(default=None, max_length=200)
    temperature: Optional[float] = None
    wind: Optional[str] = Field(default=None, max_length=100)
    flies_used: Optional[str] = None
    fish_caught: Optional[int] = Field(default=None, ge=0)
    species: Optional[str] = Field(default=None, max_length=200)
    is_public: Optional[bool] = None
    photos: Optional[List[str]] = None
    trip_date: Optional[date] = None

    @field_validator("trip_date", mode="before")
    @classmethod
    def blank_date_is_none(cls, v):
        """HTML date inputs submit "" when left empty."""
        if v == "":
            return None
        return v


class JournalEntryCreate(JournalEntryFields):
    """
    Body of POST /api/journal.

    `title` is optional at the schema level so a blank title is reported
    as the business rule "Title required" (400), matching what the
    offline client shows for a permanently rejected entry.
    """
    title: Optional[str] = Field(default=None, max_length=200)


class JournalEntryUpdate(JournalEntryFields):
    """Body of PUT /api/journal. Only fields present in the body are changed."""
    id: Optional[int] = Field(default=None, description="Entry to update")
    title: Optional[str] = Field(default=None, max_length=200)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class JournalEntryResponse(BaseModel):
    """Full representation of a stored entry. This is what the offline cache mirrors."""
    id: int
    user_id: int
    title: str
    content: str = ""
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    river_name: Optional[str] = None
    water_conditions: Optional[str] = None
    weather: Optional[str] = None
    temperature: Optional[float] = None
    wind: Optional[str] = None
    flies_used: Optional[str] = None
    fish_caught: int = 0
    species: Optional[str] = None
    is_public: bool = False
    photos: List[str] = Field(default_factory=list)
    trip_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("photos", mode="before")
    @classmethod
    def null_photos_is_empty(cls, v):
        return v or []


class JournalListResponse(BaseModel):
    """GET /api/journal."""
    entries: List[JournalEntryResponse] = Field(default_factory=list)


class JournalEntryDetail(BaseModel):
    """GET /api/journal?id=n. `entry` is null when the id is unknown."""
    entry: Optional[JournalEntryResponse] = None


class JournalCreateResponse(BaseModel):
    """
    POST /api/journal.

    `duplicate` is true when the Idempotency-Key had already been used and
    the original entry id is returned instead of a new one.
    """
    success: bool = True
    entry_id: int = Field(alias="entryId")
    duplicate: bool = False

    model_config = {"populate_by_name": True}


class SuccessResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    """
    Error body returned for every failure.

    `error` is the human-readable message; offline clients store it next to
    the queued entry that failed.
    """
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Machine-readable error code")
    details: Optional[dict] = Field(default=None)
    request_id: Optional[str] = Field(default=None)


class HealthResponse(BaseModel):
    """GET /health. The offline client's connectivity probe hits this route."""
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float
