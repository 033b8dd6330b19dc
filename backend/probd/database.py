"""
ProBD Backend - Database Session Management
===========================================

What:  Async SQLAlchemy engine, session factory, FastAPI dependency, and a
       standalone transactional scope.
How:   One pooled async engine per process. HTTP routes get a session per
       request through `get_db_session`; the live consultation WebSocket,
       which outlives any single request, opens short transactions through
       `session_scope()` each time it persists something.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from probd.config import settings


def _engine_options() -> dict:
    # SQLite (tests, local demos) uses a static pool without sizing options
    if settings.database_url.startswith("sqlite"):
        return {"echo": settings.log_level == "DEBUG"}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_recycle": 3600,
        "echo": settings.log_level == "DEBUG",
    }


engine = create_async_engine(settings.database_url, **_engine_options())

# expire_on_commit=False keeps attributes readable after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models (shared metadata for Alembic)."""
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Commits when the handler returns normally, rolls back on any exception
    and always closes the session.
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


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional scope for work that is not tied to an HTTP request.

    Usage:
        async with session_scope() as db:
            db.add(entry)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    """Close every pooled connection. Called from the lifespan on shutdown."""
    await engine.dispose()
