"""
Database engine, sessions and transaction helpers
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
import logging
from contextlib import asynccontextmanager

from app.config import settings
from app.core.exceptions import MawidException

logger = logging.getLogger(__name__)


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an async engine for ``url``.

    SQLite gets a ``NullPool`` so each session owns its connection; the
    payment row locks then behave like separate workers would.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        poolclass=AsyncAdaptedQueuePool,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Snapshots and events are built from objects after commit
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine: AsyncEngine = create_engine_for(settings.DATABASE_URL, echo=settings.DB_ECHO)
async_session = create_session_factory(engine)

Base = declarative_base()


async def init_db():
    """
    Create any missing tables
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session for read paths.

    Writes go through ``DatabaseManager.atomic_transaction`` in the services.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Transaction helper bound to a session factory
    """

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self.session_factory = session_factory
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def atomic_transaction(self):
        """
        Create a new session and commit it on successful exit.

        The commit has completed by the time the ``async with`` block returns,
        so callers can safely publish side effects afterwards.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except MawidException as e:
                # Domain rejection, nothing was written
                self.logger.debug(f"Transaction rolled back: {e.code}")
                raise
            except Exception as e:
                # session.begin() already rolled back
                self.logger.error(f"Transaction rolled back: {type(e).__name__}: {e}")
                raise
