"""Pydantic schemas for parsing Azure DevOps REST API responses.

These schemas map to the Work Item Tracking API:
- GET  {org}/{project}/_apis/wit/workitems/{id}
- GET  {org}/{project}/_apis/wit/workitems?ids=...
- POST {org}/{project}/_apis/wit/wiql
- GET  {org}/{project}/_apis/wit/workItems/{id}/comments
"""

import json
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .records import CommentRecord, WorkItemRecord

_datetime_adapter = TypeAdapter(datetime)


class AzureDevOpsIdentity(BaseModel):
    """Identity reference (System.AssignedTo, createdBy, ...)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    display_name: str | None = Field(default=None, alias="displayName")
    unique_name: str | None = Field(default=None, alias="uniqueName")
    id: str | None = Field(default=None)

    @property
    def label(self) -> str | None:
        """Stable identifier for storage: unique name, falling back to display name."""
        return self.unique_name or self.display_name


def identity_label(value: Any) -> str | None:
    """Reduce an identity field to a string.

    Older API versions return identities as "Display Name <user@domain>"
    strings instead of objects.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return AzureDevOpsIdentity.model_validate(value).label
    return str(value)


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return _datetime_adapter.validate_python(value)


class WorkItemRelation(BaseModel):
    """A link from a work item to another artifact."""

    rel: str
    url: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class WorkItemReference(BaseModel):
    """Id reference returned by WIQL queries."""

    id: int
    url: str | None = None


class AzureDevOpsWorkItem(BaseModel):
    """Work item object from the API.

    Maps to: GET /_apis/wit/workitems/{id}
    """

    model_config = ConfigDict(extra="ignore")

    id: int = Field(description="Work item id")
    rev: int = Field(default=0, description="Revision number")
    fields: dict[str, Any] = Field(default_factory=dict, description="Reference name -> value")
    relations: list[WorkItemRelation] | None = Field(default=None)
    url: str | None = Field(default=None)
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    raw_text: str | None = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any], raw_text: str | None = None) -> Self:
        """Parse an API payload, keeping the original alongside.

        ``raw_text`` is the response body when it holds exactly this work item.
        """
        item = cls.model_validate(data)
        item.raw = data
        item.raw_text = raw_text
        return item

    def raw_payload(self) -> str:
        """The payload as received: the body text when known, else the parsed dict."""
        if self.raw_text is not None:
            return self.raw_text
        return json.dumps(self.raw or self.model_dump(mode="json"), ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Well-known fields
    # -------------------------------------------------------------------------

    @property
    def title(self) -> str:
        return str(self.fields.get("System.Title") or "")

    @property
    def state(self) -> str | None:
        return self.fields.get("System.State")

    @property
    def work_item_type(self) -> str | None:
        return self.fields.get("System.WorkItemType")

    @property
    def assigned_to(self) -> str | None:
        return identity_label(self.fields.get("System.AssignedTo"))

    @property
    def created_date(self) -> datetime | None:
        return _parse_datetime(self.fields.get("System.CreatedDate"))

    @property
    def changed_date(self) -> datetime | None:
        return _parse_datetime(self.fields.get("System.ChangedDate"))

    @property
    def comment_count(self) -> int:
        try:
            return int(self.fields.get("System.CommentCount") or 0)
        except (TypeError, ValueError):
            return 0

    def to_record(self) -> WorkItemRecord:
        """Convert to the record written to the local store."""
        return WorkItemRecord(
            id=self.id,
            rev=self.rev,
            title=self.title,
            state=self.state,
            work_item_type=self.work_item_type,
            assigned_to=self.assigned_to,
            area_path=self.fields.get("System.AreaPath"),
            iteration_path=self.fields.get("System.IterationPath"),
            created_date=self.created_date,
            changed_date=self.changed_date,
            comment_count=self.comment_count,
            fields=dict(self.fields),
            raw_json=self.raw_payload(),
        )


class AzureDevOpsComment(BaseModel):
    """Comment object from the comments endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    work_item_id: int = Field(alias="workItemId")
    text: str = Field(default="")
    version: int | None = Field(default=None)
    created_by: AzureDevOpsIdentity | None = Field(default=None, alias="createdBy")
    created_date: datetime | None = Field(default=None, alias="createdDate")
    modified_by: AzureDevOpsIdentity | None = Field(default=None, alias="modifiedBy")
    modified_date: datetime | None = Field(default=None, alias="modifiedDate")
    is_deleted: bool = Field(default=False, alias="isDeleted")

    def to_record(self) -> CommentRecord:
        return CommentRecord(
            id=self.id,
            work_item_id=self.work_item_id,
            text=self.text,
            created_by=self.created_by.label if self.created_by else None,
            created_date=self.created_date,
            modified_by=self.modified_by.label if self.modified_by else None,
            modified_date=self.modified_date,
            version=self.version,
        )
