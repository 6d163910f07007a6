"""
Database layer — async SQLAlchemy 2.0 engine and session factory.

Provides:
    • Async engine and session factory per ``Database`` instance
    • Connection pool management (skipped for SQLite, which has its own)
    • Declarative base for the ORM tables in ``backend.app.storage``

The default URL is a local SQLite file via aiosqlite; production points
``DATABASE_URL`` at PostgreSQL (``postgresql+asyncpg://...``).

Usage:
    from backend.app.core.database import Database

    db = Database("sqlite+aiosqlite:///:memory:")
    await db.init()
    async with db.session() as session:
        ...
    await db.close()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


class Database:
    """Owns one engine and its session factory."""

    def __init__(self, url: Optional[str] = None, *, echo: Optional[bool] = None):
        self.url = url or settings.DATABASE_URL
        self.engine = build_engine(
            self.url,
            echo=settings.DATABASE_ECHO if echo is None else echo,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; commit on success, roll back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Create all tables (dev/test only — use migrations in production)."""
        # Import registers the tables on Base.metadata
        from backend.app.storage import sql_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised (%s)", self.safe_url)

    async def ping(self) -> bool:
        """Round-trip a trivial query."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        """Dispose engine connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")

    @property
    def safe_url(self) -> str:
        """URL without credentials, for logs and health output."""
        return self.url.split("@")[-1]
