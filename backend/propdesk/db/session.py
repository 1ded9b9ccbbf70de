"""
Database Session Management
PropDesk Challenge Platform

Async engine and session factory for the trade journal, with:
- Context manager support
- Dependency injection for FastAPI
- Health check capabilities
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from propdesk.core.config import settings
from propdesk.db.base import Base


class DatabaseService:
    """
    Owns the engine for one database URL.

    SQLite URLs get the driver defaults; server databases get a
    pre-pinged, recycled connection pool.
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or settings.DATABASE_URL
        engine_options = {"echo": echo, "future": True}
        if not self.url.startswith("sqlite"):
            engine_options.update(
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=1800,
                pool_pre_ping=True,
            )

        self.engine: AsyncEngine = create_async_engine(self.url, **engine_options)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database sessions.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """
        Create journal tables.

        Note: use migrations for anything long-lived.
        """
        from propdesk.db import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Journal tables ready")

    async def health_check(self) -> bool:
        """Returns True if the database is accessible."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close all database connections."""
        await self.engine.dispose()


_database: Optional[DatabaseService] = None


def get_database() -> DatabaseService:
    """Get or create the process database service."""
    global _database
    if _database is None:
        _database = DatabaseService(echo=settings.db.echo)
    return _database


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_database().session() as session:
        yield session


async def close_database() -> None:
    global _database
    if _database is not None:
        await _database.close()
        _database = None
