"""Base repository pattern implementation for async SQLAlchemy.

Provides common session handling shared across all repositories.
"""

import asyncio
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ado_mirror.db.models import Base

# Generic type variable for model classes
ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Base repository with common async session handling.

    Usage:
        class WorkItemRepository(BaseRepository[WorkItem]):
            def __init__(self, session: AsyncSession) -> None:
                super().__init__(session, WorkItem)

    Concurrency:
        When several coroutines share one session, pass a shared write_lock
        so flushes are serialized.
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: type[ModelT],
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        """Initialize the repository with a session.

        Args:
            session: Async SQLAlchemy session (caller manages lifecycle)
            model_class: The SQLAlchemy model class this repository manages
            write_lock: Optional lock to serialize flushes (shared across repos)
        """
        self._session = session
        self._model_class = model_class
        self._write_lock = write_lock

    @property
    def session(self) -> AsyncSession:
        """Access the underlying session."""
        return self._session

    async def get_by_id(self, id: Any) -> ModelT | None:
        """Get an entity by its primary key."""
        return await self._session.get(self._model_class, id)

    def add(self, entity: ModelT) -> ModelT:
        """Add an entity to the session (does not flush)."""
        self._session.add(entity)
        return entity

    async def flush(self) -> None:
        """Flush pending changes, holding the write lock if one was provided."""
        if self._write_lock:
            async with self._write_lock:
                await self._session.flush()
        else:
            await self._session.flush()

    async def count(self) -> int:
        """Count total entities of this type."""
        stmt = select(func.count()).select_from(self._model_class)
        result = await self._session.execute(stmt)
        return result.scalar() or 0
