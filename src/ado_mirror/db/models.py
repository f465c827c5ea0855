"""SQLAlchemy ORM models for ADO Mirror."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, TypeDecorator, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UTCDateTime(TypeDecorator[datetime]):
    """Stores naive UTC, returns timezone-aware UTC.

    SQLite has no timezone support, so values are normalized on the way in
    and tagged with UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


# ------------------------------------------------------------------------------
# WorkItem model
# ------------------------------------------------------------------------------
class WorkItem(Base):
    """Cached Azure DevOps work item."""

    __tablename__ = "work_items"

    # Remote id; never reassigned
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    rev: Mapped[int] = mapped_column(default=0)

    # --------------------------------------------------------------------------
    # Commonly queried fields
    # --------------------------------------------------------------------------
    title: Mapped[str] = mapped_column(String(500), default="")
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    work_item_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    area_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    iteration_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    changed_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    comment_count: Mapped[int] = mapped_column(default=0)

    # --------------------------------------------------------------------------
    # Opaque payload
    # --------------------------------------------------------------------------
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    raw_json: Mapped[str] = mapped_column(Text, default="{}")
    content_signature: Mapped[str] = mapped_column(String(64), default="")

    # --------------------------------------------------------------------------
    # Sync metadata
    # --------------------------------------------------------------------------
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    comments: Mapped[list["WorkItemComment"]] = relationship(
        back_populates="work_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_work_items_state", "state"),
        Index("ix_work_items_type", "work_item_type"),
        Index("ix_work_items_deleted_at", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<WorkItem(id={self.id}, rev={self.rev}, title='{self.title[:30]}')>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ------------------------------------------------------------------------------
# WorkItemComment model
# ------------------------------------------------------------------------------
class WorkItemComment(Base):
    """Comment on a cached work item."""

    __tablename__ = "work_item_comments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    work_item_id: Mapped[int] = mapped_column(
        ForeignKey("work_items.id", ondelete="CASCADE"), index=True
    )
    text: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    modified_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    modified_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int | None] = mapped_column(nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64))
    synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    work_item: Mapped["WorkItem"] = relationship(back_populates="comments")

    def __repr__(self) -> str:
        return f"<WorkItemComment(id={self.id}, work_item_id={self.work_item_id})>"


# ------------------------------------------------------------------------------
# SyncCursor model
# ------------------------------------------------------------------------------
class SyncCursor(Base):
    """Per work item sync bookkeeping.

    Advanced only by the sync engine, and only after the corresponding
    write succeeded.
    """

    __tablename__ = "sync_cursors"

    work_item_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    rev: Mapped[int] = mapped_column(default=0)
    content_signature: Mapped[str] = mapped_column(String(64))
    last_synced_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    comments_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncCursor(work_item_id={self.work_item_id}, rev={self.rev})>"
