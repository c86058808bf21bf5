"""
Database session management with tenant context injection.

Flow:
  1. FastAPI dependency resolves the caller (user id, company id, role)
     from the JWT and builds request_scope(...) for it.
  2. Each `async with scope() as session:` block is one transaction that
     starts by setting the PostgreSQL GUCs that RLS policies and
     match_chunks() read:
         app.current_tenant_id   company id
         app.current_user_id     user id
         app.current_role        employee | manager | admin
  3. The block commits on success, rolls back on error.  set_config(...,
     true) is transaction-local, so the GUCs clear when it ends.

Workers have no end-user identity; create_session_scope() builds a
tenant_scope(company_id) that only pins the company.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

_settings = get_settings()

engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    pool_size=_settings.db_pool_size,
    max_overflow=_settings.db_max_overflow,
    pool_pre_ping=True,           # detect stale connections before use
    pool_recycle=3600,            # recycle connections every hour
    echo=_settings.db_echo_sql,
)

# expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# ---------------------------------------------------------------------------
# Tenant context helper
# ---------------------------------------------------------------------------

async def set_request_context(
    session: AsyncSession,
    company_id: UUID,
    user_id: UUID | None = None,
    role: str | None = None,
) -> None:
    """Set the transaction-local GUCs that RLS policies read."""
    await session.execute(
        text("SELECT set_config('app.current_tenant_id', :tid, true)"),
        {"tid": str(company_id)},
    )
    if user_id is not None:
        await session.execute(
            text("SELECT set_config('app.current_user_id', :uid, true)"),
            {"uid": str(user_id)},
        )
    if role is not None:
        await session.execute(
            text("SELECT set_config('app.current_role', :role, true)"),
            {"role": role},
        )
    logger.debug("Request context set | tenant=%s user=%s role=%s", company_id, user_id, role)


# ---------------------------------------------------------------------------
# Request scopes (API)
# ---------------------------------------------------------------------------

RequestScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def request_scope(company_id: UUID, user_id: UUID, role: str) -> RequestScope:
    """
    Returns a factory of caller-scoped transactions.

    Services open one short transaction per step instead of holding a
    single request-wide transaction across S3 / OpenAI / broker calls.
    See app.auth.dependencies for the composed dependency.
    """

    @asynccontextmanager
    async def scope() -> AsyncIterator[AsyncSession]:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await set_request_context(session, company_id, user_id, role)
                yield session

    return scope


# ---------------------------------------------------------------------------
# Worker sessions (company context only)
# ---------------------------------------------------------------------------

def create_session_scope(
    database_url: str,
) -> Callable[[UUID], AbstractAsyncContextManager[AsyncSession]]:
    """
    Build tenant_scope(company_id) for a worker process.

    Uses its own NullPool engine: Celery forks worker processes, and pooled
    asyncpg connections must not cross a fork or an event loop.
    """
    worker_engine = create_async_engine(database_url, poolclass=NullPool)
    factory = async_sessionmaker(bind=worker_engine, expire_on_commit=False, autoflush=False)

    @asynccontextmanager
    async def tenant_scope(company_id: UUID) -> AsyncIterator[AsyncSession]:
        """One transaction pinned to a company; commits together or not at all."""
        async with factory() as session:
            async with session.begin():
                await set_request_context(session, company_id)
                yield session

    return tenant_scope


# ---------------------------------------------------------------------------
# Health check helper
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
