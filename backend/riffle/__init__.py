"""
Riffle Backend — Application Package Initializer
=================================================

What: Fly-fishing journal backend plus the offline-first journal sync client.

Architecture Note:
    Two halves share this package:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← /api/journal, /health
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← quota, idempotency, CRUD
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    ┌─────────────────────────────────────┐
    │  offline/ (runs on the device)      │
    │  LocalStore → SyncEngine → Channel  │  ← queue, drain, broadcast
    │  Connectivity, Background trigger   │
    └─────────────────────────────────────┘

    The offline client talks to the routes above only over HTTP.
"""

__version__ = "1.0.0"
