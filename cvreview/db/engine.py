"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with asyncpg driver for PostgreSQL.
Redis client backs the booking rate limiter.

Request sessions carry two hook lists in `session.info`: work to run once
the transaction has committed, and work that undoes an external side effect
if it rolls back. Domain events and Google Calendar cleanup hang off them.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cvreview.config import settings

logger = logging.getLogger(__name__)

SessionHook = Callable[[], Awaitable[None]]

_AFTER_COMMIT = "cvreview.after_commit"
_AFTER_ROLLBACK = "cvreview.after_rollback"

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# ── Session factory ──────────────────────────────────────────────────

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def after_commit(session: AsyncSession, hook: SessionHook) -> None:
    """Run `hook` once the request transaction on `session` has committed."""
    session.info.setdefault(_AFTER_COMMIT, []).append(hook)


def after_rollback(session: AsyncSession, hook: SessionHook) -> None:
    """Run `hook` if the request transaction on `session` rolls back instead."""
    session.info.setdefault(_AFTER_ROLLBACK, []).append(hook)


async def run_session_hooks(session: AsyncSession, *, committed: bool) -> None:
    """Run and clear the hooks for how the transaction ended.

    Hooks run in registration order. One failing hook is logged and does not
    stop the rest; the transaction outcome is already final.
    """
    commit_hooks: list[SessionHook] = session.info.pop(_AFTER_COMMIT, [])
    rollback_hooks: list[SessionHook] = session.info.pop(_AFTER_ROLLBACK, [])
    outcome = "commit" if committed else "rollback"
    for hook in commit_hooks if committed else rollback_hooks:
        try:
            await hook()
        except Exception:
            logger.exception("After-%s hook %r failed", outcome, hook)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI: yields an async DB session.

    The whole request runs in one transaction: committed when the handler
    returns, rolled back when it raises or the commit fails. Booking creation
    and reschedule rely on this so a failed step never leaves a partial write
    behind. Session hooks run after the outcome is known.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            await run_session_hooks(session, committed=False)
            raise
        await run_session_hooks(session, committed=True)


# ── Redis client ─────────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Initialize database connection pool.

    Called during FastAPI lifespan startup. In production, tables are
    created via Alembic migrations; this only verifies connectivity.
    """
    async with engine.begin() as conn:
        # Import here to ensure all models are registered with Base.metadata
        from cvreview.models import Base

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose database engine and Redis connections."""
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Context manager for database lifecycle.

    Usage in FastAPI lifespan:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with db_lifespan():
                yield
    """
    await init_db()
    try:
        yield
    finally:
        await close_db()
