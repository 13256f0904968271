"""
Riffle Backend — Database Session Management
==============================================

What:  The journal API's engine and the per-request session dependency.
How:   One async engine per process (Postgres via asyncpg, SQLite via
       aiosqlite in tests). Each request gets its own session, committed when
       the handler returns and rolled back when it raises.
Who:   JournalService through get_db_session; the health probe; Alembic.

Note: this is the server's database. The offline client keeps its own
SQLite file and its own engine (see riffle/offline/storage.py).
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from riffle.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """
    Pool options for the configured backend.

    SQLite (tests, single-user deployments) uses a static file handle and
    rejects pool sizing arguments, so those are only passed for servers.
    """
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Base class for all server-side SQLAlchemy ORM models."""
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session: commit after the handler, roll back and re-raise on error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_tables() -> None:
    """
    Create all tables that do not exist yet.

    For development and tests; production schemas are managed by Alembic.
    """
    # Register models on Base.metadata
    from riffle.models import journal_entry  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Gracefully closes all connections in the pool (application shutdown)."""
    await engine.dispose()
