"""Database connection management for the settings store"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from ..config import settings
from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connections and sessions"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self, create_tables: bool = False):
        """Initialize database connections"""
        try:
            self.engine = create_async_engine(
                self.database_url,
                poolclass=NullPool,
                echo=settings.DEBUG,
                future=True
            )

            self.async_session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            if create_tables:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)

            logger.info("Settings store connection initialized")

        except Exception as e:
            logger.error(f"Failed to initialize settings store: {e}")
            raise

    async def close(self):
        """Dispose of the engine"""
        if self.engine:
            await self.engine.dispose()
            logger.info("SQLAlchemy engine disposed")
            self.engine = None
            self.async_session_maker = None

    @property
    def is_initialized(self) -> bool:
        return self.async_session_maker is not None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get SQLAlchemy async session"""
        if not self.async_session_maker:
            raise RuntimeError("Database not initialized")

        async with self.async_session_maker() as session:
            try:
                yield session
            except Exception as e:
                await session.rollback()
                logger.error(f"Database session error: {e}")
                raise


# Global database manager instance
db_manager = DatabaseManager()
