"""Base storage class: engine lifecycle and session handling.

Every session commits on clean exit and rolls back on any exception.
SQLAlchemy errors are mapped to StorageError (TransientStorageError for
operational failures that are worth retrying).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hookgate.config import settings
from hookgate.exceptions import StorageError

from .retry import TransientStorageError
from .tables import Base

logger = logging.getLogger(__name__)


class StorageBase:
    """Base class for Hookgate storage with initialization and helpers.

    Provides:
    - Engine creation and disposal
    - Schema creation
    - Transactional sessions with error mapping
    """

    def __init__(self, database_url: str | None = None, echo: bool | None = None) -> None:
        """Initialize storage.

        Args:
            database_url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Echo SQL. Defaults to settings.database_echo.
        """
        self._database_url = database_url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        self._engine = create_async_engine(self._database_url, echo=self._echo)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional session.

        Commits when the block exits normally, rolls back otherwise.
        """
        if self._session_factory is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            logger.error("DB integrity error: %s", e)
            raise StorageError("Integrity constraint violated") from e
        except OperationalError as e:
            await session.rollback()
            logger.error("DB operational error: %s", e)
            raise TransientStorageError("Connection or operational error") from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("SQLAlchemy error: %s", e)
            raise StorageError("Database operation failed") from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (StorageError, RuntimeError):
            return False
