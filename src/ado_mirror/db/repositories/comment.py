"""Repository for work item comments."""

from __future__ import annotations

import asyncio
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ado_mirror.db.models import WorkItemComment, utc_now
from ado_mirror.schemas import CommentRecord

from .base import BaseRepository


class CommentRepository(BaseRepository[WorkItemComment]):
    """Repository for WorkItemComment entities."""

    def __init__(self, session: AsyncSession, write_lock: asyncio.Lock | None = None) -> None:
        super().__init__(session, WorkItemComment, write_lock)

    async def get_hashes(self, work_item_id: int) -> dict[int, str]:
        """Stored content hash per comment id for one work item."""
        stmt = select(WorkItemComment.id, WorkItemComment.content_hash).where(
            WorkItemComment.work_item_id == work_item_id
        )
        result = await self._session.execute(stmt)
        return {comment_id: content_hash for comment_id, content_hash in result.all()}

    async def list_for_work_item(self, work_item_id: int) -> list[WorkItemComment]:
        stmt = (
            select(WorkItemComment)
            .where(WorkItemComment.work_item_id == work_item_id)
            .order_by(WorkItemComment.created_date, WorkItemComment.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_comment(
        self,
        record: CommentRecord,
        *,
        synced_at: datetime | None = None,
    ) -> WorkItemComment:
        """Create or overwrite a comment from a record."""
        entity = await self.get_by_id(record.id)
        if entity is None:
            entity = self.add(WorkItemComment(id=record.id, work_item_id=record.work_item_id))
        entity.text = record.text
        entity.created_by = record.created_by
        entity.created_date = record.created_date
        entity.modified_by = record.modified_by
        entity.modified_date = record.modified_date
        entity.version = record.version
        entity.content_hash = record.content_hash
        entity.synced_at = synced_at or utc_now()
        await self.flush()
        return entity
