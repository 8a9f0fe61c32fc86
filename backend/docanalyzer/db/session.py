"""
Database session management with user context injection.

Flow:
  1. The request dependency resolves the numeric user id (X-User-ID header).
  2. user_session() opens a connection, begins a transaction and sets the
     PostgreSQL GUC `app.current_user_id` for the lifetime of that
     transaction, then yields the session.
  3. On exit the transaction commits (or rolls back on error), the GUC is
     cleared with it and the connection goes back to the pool.

Security guarantee:
  Every SQL statement issued through these sessions is filtered by RLS at the
  database engine level, whether or not a query also filters on
  user_int_id.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docanalyzer.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,          # detect stale connections before use
    pool_recycle=3600,           # recycle connections every hour
    echo=settings.db_echo_sql,
)

# expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# ---------------------------------------------------------------------------
# User context helper
# ---------------------------------------------------------------------------

async def _set_user_context(session: AsyncSession, user_id: int) -> None:
    """
    Set the transaction-local variable that RLS policies read.

    set_config(..., true) is SET LOCAL in function form; it accepts bind
    parameters, which SET itself does not.
    """
    await session.execute(
        text("SELECT set_config('app.current_user_id', :uid, true)"),
        {"uid": str(user_id)},
    )
    logger.debug("User context set: %s", user_id)


@asynccontextmanager
async def user_session(user_id: int) -> AsyncGenerator[AsyncSession, None]:
    """
    One user-scoped transaction.

    Usage:
        async with user_session(user_id) as session:
            await session.execute(insert(Document).values(...))
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            await _set_user_context(session, user_id)
            yield session
            # commits on exit of the begin() block


# ---------------------------------------------------------------------------
# Health / lifecycle
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}


async def dispose_engine() -> None:
    await engine.dispose()
    logger.info("Database pool disposed")
