"""
Riffle — Offline Sync Data Models
===================================

What:  Pydantic models passed between the local store, the sync engine,
       the broadcast channel, and the UI.

Naming:
    Queue records use `local_id` in Python; `to_dict()` produces the
    flattened record shape UIs render, with `localId` as the key, so a
    pending entry reads like a normal entry plus bookkeeping.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SYNC_COMPLETE = "SYNC_COMPLETE"


class PendingEntry(BaseModel):
    """
    A journal entry written on the device and not yet accepted by the API.

    Invariants:
        - local_id is assigned by the store, sequential, never reused
        - synced is always False while the record is in the queue
        - the record is never modified; it is removed once accepted
    """
    local_id: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(description="Device clock at enqueue time (ISO 8601)")
    synced: bool = False

    model_config = {"frozen": True}

    @property
    def title(self) -> Optional[str]:
        return self.payload.get("title")

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.payload,
            "localId": self.local_id,
            "created_at": self.created_at,
            "synced": self.synced,
        }


class CachedEntry(BaseModel):
    """Read-only mirror of a server entry, keyed by the server id."""
    id: int
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def title(self) -> Optional[str]:
        return self.payload.get("title")

    def to_dict(self) -> Dict[str, Any]:
        return {**self.payload, "id": self.id}


class SyncFailure(BaseModel):
    """
    One entry the batch could not deliver.

    status_code is None for network failures. permanent marks rejections
    that will repeat on every retry; the entry is still left queued.
    """
    entry: PendingEntry
    error: str
    status_code: Optional[int] = None
    permanent: bool = False


def _plural(count: int) -> str:
    return "entry" if count == 1 else "entries"


class SyncResult(BaseModel):
    """
    Outcome of one sync batch.

    Every entry read at the start of the batch appears in exactly one of
    `synced` (in submission order) or `failed`.
    """
    synced: List[PendingEntry] = Field(default_factory=list)
    failed: List[SyncFailure] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.synced)

    def summary(self) -> str:
        """Short non-blocking status line, e.g. '2 entries synced, 1 entry failed to sync'."""
        parts = []
        if self.synced:
            parts.append(f"{len(self.synced)} {_plural(len(self.synced))} synced")
        if self.failed:
            parts.append(f"{len(self.failed)} {_plural(len(self.failed))} failed to sync")
        return ", ".join(parts) or "Nothing to sync"


class SyncCompleteMessage(BaseModel):
    """Broadcast to every open UI surface after a batch: {type: "SYNC_COMPLETE", count}."""
    type: Literal["SYNC_COMPLETE"] = SYNC_COMPLETE
    count: int = Field(ge=0)


class SaveResult(BaseModel):
    """
    What happened to an entry the user just submitted.

    saved=True with entry_id  → created on the server
    saved=True with local_id  → queued on the device (queued=True)
    saved=False with warning  → local storage failed; nothing kept
    saved=False with error    → the server rejected the entry
    """
    saved: bool
    queued: bool = False
    entry_id: Optional[int] = None
    local_id: Optional[int] = None
    warning: Optional[str] = None
    error: Optional[str] = None


class EntryListing(BaseModel):
    """
    What the journal screen renders.

    entries holds pending records first (flagged "pending": True) then the
    server entries. from_cache is True when the server list could not be
    refreshed and the last snapshot is shown.
    """
    entries: List[Dict[str, Any]] = Field(default_factory=list)
    pending_count: int = 0
    from_cache: bool = False
