"""Repository for per work item sync cursors."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ado_mirror.db.models import SyncCursor

from .base import BaseRepository


class SyncCursorRepository(BaseRepository[SyncCursor]):
    """Repository for SyncCursor entities.

    Only the sync engine writes cursors, and only after the write they
    describe has succeeded.
    """

    def __init__(self, session: AsyncSession, write_lock: asyncio.Lock | None = None) -> None:
        super().__init__(session, SyncCursor, write_lock)

    async def get(self, work_item_id: int) -> SyncCursor | None:
        return await self.get_by_id(work_item_id)

    async def get_many(self, work_item_ids: Iterable[int]) -> dict[int, SyncCursor]:
        ids = list(work_item_ids)
        if not ids:
            return {}
        stmt = select(SyncCursor).where(SyncCursor.work_item_id.in_(ids))
        result = await self._session.execute(stmt)
        return {cursor.work_item_id: cursor for cursor in result.scalars().all()}

    async def advance_record(
        self,
        work_item_id: int,
        *,
        rev: int,
        content_signature: str,
        synced_at: datetime,
    ) -> SyncCursor:
        """Record a successful work item write."""
        cursor = await self.get_by_id(work_item_id)
        if cursor is None:
            cursor = self.add(
                SyncCursor(
                    work_item_id=work_item_id,
                    rev=rev,
                    content_signature=content_signature,
                    last_synced_at=synced_at,
                )
            )
        else:
            cursor.rev = rev
            cursor.content_signature = content_signature
            cursor.last_synced_at = synced_at
        await self.flush()
        return cursor

    async def advance_comments(self, work_item_id: int, *, synced_at: datetime) -> bool:
        """Record a successful comment sync; False if the item has no cursor yet."""
        cursor = await self.get_by_id(work_item_id)
        if cursor is None:
            return False
        cursor.comments_synced_at = synced_at
        cursor.last_synced_at = max(cursor.last_synced_at, synced_at)
        await self.flush()
        return True

    async def latest_sync_time(self) -> datetime | None:
        """Newest last_synced_at across all cursors (the global cursor)."""
        result = await self._session.execute(select(func.max(SyncCursor.last_synced_at)))
        return result.scalar()
