"""Local record schemas written to and read from the store."""

from datetime import UTC, datetime
from typing import Any

from pydantic import Field, computed_field

from .base import SchemaBase, stable_hash


def _utc_iso(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class WorkItemRecord(SchemaBase):
    """A work item as the sync engine writes it.

    Commonly queried fields get their own attribute; everything the
    server sent is kept in ``fields`` and, verbatim, in ``raw_json``.
    """

    id: int = Field(gt=0, description="Azure DevOps work item id")
    rev: int = Field(ge=0, description="Server revision number")
    title: str = Field(default="", description="System.Title")
    state: str | None = Field(default=None, description="System.State")
    work_item_type: str | None = Field(default=None, description="System.WorkItemType")
    assigned_to: str | None = Field(default=None, description="Assignee unique name")
    area_path: str | None = Field(default=None)
    iteration_path: str | None = Field(default=None)
    created_date: datetime | None = Field(default=None)
    changed_date: datetime | None = Field(default=None)
    comment_count: int = Field(default=0, ge=0)
    fields: dict[str, Any] = Field(default_factory=dict, description="Open-ended field bag")
    raw_json: str = Field(default="{}", description="Raw API payload")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_signature(self) -> str:
        """Hash over revision and field bag; equal signatures mean no change."""
        return stable_hash({"rev": self.rev, "fields": self.fields})


class CommentRecord(SchemaBase):
    """A work item comment as the sync engine writes it."""

    id: int = Field(description="Comment id (unique within the organization)")
    work_item_id: int = Field(gt=0)
    text: str = Field(default="")
    created_by: str | None = Field(default=None)
    created_date: datetime | None = Field(default=None)
    modified_by: str | None = Field(default=None)
    modified_date: datetime | None = Field(default=None)
    version: int | None = Field(default=None)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        """Hash of text plus modified timestamp; unchanged hash means skip the write."""
        return stable_hash(self.text + _utc_iso(self.modified_date))


class WorkItemRead(SchemaBase):
    """A cached work item row as returned to readers."""

    id: int
    rev: int
    title: str
    state: str | None = None
    work_item_type: str | None = None
    assigned_to: str | None = None
    area_path: str | None = None
    iteration_path: str | None = None
    created_date: datetime | None = None
    changed_date: datetime | None = None
    comment_count: int = 0
    fields: dict[str, Any] = Field(default_factory=dict)
    last_synced_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
