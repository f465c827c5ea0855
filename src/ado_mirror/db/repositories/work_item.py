"""Repository for cached work items (the local store contract)."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ado_mirror.db.models import SyncCursor, WorkItem, WorkItemComment, utc_now
from ado_mirror.logging import get_logger
from ado_mirror.schemas import WorkItemRecord

from .base import BaseRepository

logger = get_logger(__name__)


class UpsertOutcome(StrEnum):
    """What an upsert did to the stored row."""

    CREATED = "created"
    UPDATED = "updated"
    RESTORED = "restored"
    """A tombstoned row was seen again and brought back."""

    STALE = "stale"
    """Incoming revision is older than the stored one; nothing written."""


class WorkItemRepository(BaseRepository[WorkItem]):
    """Repository for WorkItem entities.

    Tombstoned rows (``deleted_at`` set) stay retrievable by id but are
    excluded from list queries until they are purged.
    """

    def __init__(self, session: AsyncSession, write_lock: asyncio.Lock | None = None) -> None:
        super().__init__(session, WorkItem, write_lock)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_by_id(self, work_item_id: int) -> WorkItem | None:
        """Get a work item by id, including tombstoned rows."""
        return await self.get_by_id(work_item_id)

    async def list_tracked_ids(self) -> list[int]:
        """Ids of all rows that are not tombstoned, ascending."""
        stmt = select(WorkItem.id).where(WorkItem.deleted_at.is_(None)).order_by(WorkItem.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def tombstoned_ids(self, work_item_ids: Iterable[int]) -> set[int]:
        """Subset of the given ids whose rows are tombstoned."""
        ids = list(work_item_ids)
        if not ids:
            return set()
        stmt = select(WorkItem.id).where(WorkItem.id.in_(ids), WorkItem.deleted_at.is_not(None))
        result = await self._session.execute(stmt)
        return set(result.scalars().all())

    async def list_active(
        self,
        *,
        state: str | None = None,
        work_item_type: str | None = None,
        limit: int | None = None,
    ) -> list[WorkItem]:
        """List non-tombstoned work items, most recently changed first."""
        stmt = select(WorkItem).where(WorkItem.deleted_at.is_(None))
        if state is not None:
            stmt = stmt.where(WorkItem.state == state)
        if work_item_type is not None:
            stmt = stmt.where(WorkItem.work_item_type == work_item_type)
        stmt = stmt.order_by(WorkItem.changed_date.desc(), WorkItem.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def upsert_record(
        self,
        record: WorkItemRecord,
        *,
        synced_at: datetime | None = None,
    ) -> UpsertOutcome:
        """Create or update a work item from a record.

        The stored revision never decreases: an older incoming revision is
        ignored. A tombstoned row is restored.

        Args:
            record: Record built from the API payload
            synced_at: Sync timestamp to store (now if not provided)

        Returns:
            UpsertOutcome describing the write
        """
        existing = await self.get_by_id(record.id)
        outcome = self._merge(existing, record, synced_at or utc_now())
        if outcome is not UpsertOutcome.STALE:
            await self.flush()
        return outcome

    async def upsert_many(
        self,
        records: Iterable[WorkItemRecord],
        *,
        synced_at: datetime | None = None,
    ) -> dict[int, UpsertOutcome]:
        """Batched upsert with a single flush.

        Later records with the same id replace earlier ones. A failed flush
        propagates; the caller rolls back the whole batch.

        Returns:
            Outcome per work item id
        """
        latest = {record.id: record for record in records}
        if not latest:
            return {}
        synced_at = synced_at or utc_now()

        stmt = select(WorkItem).where(WorkItem.id.in_(latest))
        stored = {item.id: item for item in (await self._session.execute(stmt)).scalars()}
        outcomes = {
            work_item_id: self._merge(stored.get(work_item_id), record, synced_at)
            for work_item_id, record in latest.items()
        }
        await self.flush()
        return outcomes

    def _merge(
        self,
        existing: WorkItem | None,
        record: WorkItemRecord,
        synced_at: datetime,
    ) -> UpsertOutcome:
        if existing is None:
            entity = WorkItem(id=record.id)
            self._apply(entity, record, synced_at)
            self.add(entity)
            return UpsertOutcome.CREATED

        if record.rev < existing.rev:
            logger.warning(
                "Ignoring stale revision {} for work item {} (stored revision {})",
                record.rev,
                record.id,
                existing.rev,
            )
            return UpsertOutcome.STALE

        restored = existing.deleted_at is not None
        self._apply(existing, record, synced_at)
        existing.deleted_at = None
        return UpsertOutcome.RESTORED if restored else UpsertOutcome.UPDATED

    @staticmethod
    def _apply(entity: WorkItem, record: WorkItemRecord, synced_at: datetime) -> None:
        entity.rev = record.rev
        entity.title = record.title
        entity.state = record.state
        entity.work_item_type = record.work_item_type
        entity.assigned_to = record.assigned_to
        entity.area_path = record.area_path
        entity.iteration_path = record.iteration_path
        entity.created_date = record.created_date
        entity.changed_date = record.changed_date
        entity.comment_count = record.comment_count
        entity.fields = dict(record.fields)
        entity.raw_json = record.raw_json
        entity.content_signature = record.content_signature
        entity.last_synced_at = synced_at

    async def mark_deleted(self, work_item_id: int, *, at: datetime | None = None) -> bool:
        """Tombstone a work item.

        Returns:
            True if the row was newly tombstoned, False if missing or already deleted
        """
        entity = await self.get_by_id(work_item_id)
        if entity is None or entity.deleted_at is not None:
            return False
        entity.deleted_at = at or utc_now()
        await self.flush()
        return True

    async def purge_tombstones(self, older_than: datetime) -> list[int]:
        """Physically delete rows tombstoned before ``older_than``.

        Comments and cursors of purged work items are deleted with them.

        Returns:
            Ids that were purged
        """
        stmt = select(WorkItem.id).where(
            WorkItem.deleted_at.is_not(None), WorkItem.deleted_at < older_than
        )
        ids = list((await self._session.execute(stmt)).scalars().all())
        if not ids:
            return []

        await self._session.execute(
            delete(WorkItemComment).where(WorkItemComment.work_item_id.in_(ids))
        )
        await self._session.execute(delete(SyncCursor).where(SyncCursor.work_item_id.in_(ids)))
        await self._session.execute(delete(WorkItem).where(WorkItem.id.in_(ids)))
        logger.info("Purged {} tombstoned work item(s)", len(ids))
        return ids
