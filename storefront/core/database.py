"""
Database configuration and session management

The engine is owned by an explicitly constructed ``Database`` handle that is
opened and closed by the application lifespan. Nothing connects at import time.
Pool sizing follows ENVIRONMENT (pooled in production, small pool in dev,
StaticPool for in-memory SQLite).
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from storefront.core.config import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _pool_config(settings: Settings) -> dict:
    if settings.DATABASE_URL.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    if settings.ENVIRONMENT == "production":
        return {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,  # Verify connections before use
        }

    return {
        "pool_size": 2,
        "max_overflow": 5,
        "pool_pre_ping": True,
    }


class Database:
    """Process-lifetime persistence handle."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not initialized; call init() first")
        return self._engine

    async def init(self, create_schema: bool = False) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self.settings.DATABASE_URL,
            echo=self.settings.DEBUG,
            **_pool_config(self.settings),
        )
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_schema:
            # Import models so they register with Base.metadata
            import storefront.models  # noqa: F401

            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized (environment=%s)", self.settings.ENVIRONMENT)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._sessionmaker = None

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not initialized; call init() first")
        return self._sessionmaker()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for sessions outside FastAPI request context.

        Use this in background jobs and CLI scripts:

            async with database.session_scope() as db:
                ...
        """
        async with self.session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency for getting async database sessions"""
    database: Database = request.app.state.db
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
