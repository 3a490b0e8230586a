"""
Database configuration and session management
Uses SQLAlchemy with async support
"""

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy import event
from sqlalchemy.pool import NullPool
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import logging

from .config import settings

logger = logging.getLogger(__name__)

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite leaves constraint checks off unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend"""
    if url.startswith("sqlite"):
        # SQLite doesn't support connection pooling parameters
        sqlite_engine = create_async_engine(url, echo=echo, poolclass=NullPool)
        event.listen(sqlite_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    # PostgreSQL and other databases support pooling
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True,  # Verify connections before use
    )

def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

engine = create_engine_for_url(settings.database_url_async, echo=settings.DATABASE_ECHO)

AsyncSessionLocal = create_session_factory(engine)

@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional scope around a series of operations
    Commits on success, rolls back and re-raises on error
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Initialize database tables"""
    from mailhub.models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")

async def close_db(bind: Optional[AsyncEngine] = None) -> None:
    """Close database connections"""
    await (bind or engine).dispose()
    logger.info("Database connections closed")
