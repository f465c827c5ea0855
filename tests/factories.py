"""Factory functions for creating test data.

This module provides factory functions for:
- SQLAlchemy ORM models (WorkItem, WorkItemComment, SyncCursor)
- Local records (WorkItemRecord, CommentRecord)
- Azure DevOps API payloads (work items, comments)

Design principles:
- Factories provide sensible defaults that can be overridden
- Model factories add to session but don't flush (tests control flush timing)
- Payload factories return dicts shaped like the REST API responses
"""

from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ado_mirror.db.models import SyncCursor, WorkItem, WorkItemComment
from ado_mirror.schemas import CommentRecord, WorkItemRecord

# Import test timeline constants
from tests.conftest import JAN_10_ISO, JAN_15, JAN_15_ISO, TEST_ORG, TEST_PROJECT


# -----------------------------------------------------------------------------
# Model Factories
# -----------------------------------------------------------------------------
def make_work_item(
    session: AsyncSession,
    *,
    id: int = 42,
    rev: int = 1,
    title: str = "Investigate login timeout",
    state: str | None = "Active",
    work_item_type: str | None = "Bug",
    changed_date: datetime | None = JAN_15,
    deleted_at: datetime | None = None,
    content_signature: str = "sig-1",
    **overrides: Any,
) -> WorkItem:
    """Create a WorkItem model instance.

    Args:
        session: Async database session (model will be added but not flushed)
        id: Azure DevOps work item id
        rev: Revision number
        title: System.Title
        state: System.State
        work_item_type: System.WorkItemType
        changed_date: System.ChangedDate
        deleted_at: Tombstone timestamp (None for live rows)
        content_signature: Stored signature
        **overrides: Additional field overrides

    Returns:
        WorkItem instance (added to session, not flushed)
    """
    item = WorkItem(
        id=id,
        rev=rev,
        title=title,
        state=state,
        work_item_type=work_item_type,
        changed_date=changed_date,
        deleted_at=deleted_at,
        content_signature=content_signature,
        fields=overrides.pop("fields", {"System.Title": title}),
        raw_json=overrides.pop("raw_json", "{}"),
        **overrides,
    )
    session.add(item)
    return item


def make_comment(
    session: AsyncSession,
    *,
    id: int = 1001,
    work_item_id: int = 42,
    text: str = "Repro steps attached",
    content_hash: str = "hash-1",
    **overrides: Any,
) -> WorkItemComment:
    """Create a WorkItemComment model instance (added to session, not flushed)."""
    comment = WorkItemComment(
        id=id,
        work_item_id=work_item_id,
        text=text,
        content_hash=content_hash,
        **overrides,
    )
    session.add(comment)
    return comment


def make_cursor(
    session: AsyncSession,
    *,
    work_item_id: int = 42,
    rev: int = 1,
    content_signature: str = "sig-1",
    last_synced_at: datetime = JAN_15,
    comments_synced_at: datetime | None = None,
) -> SyncCursor:
    """Create a SyncCursor model instance (added to session, not flushed)."""
    cursor = SyncCursor(
        work_item_id=work_item_id,
        rev=rev,
        content_signature=content_signature,
        last_synced_at=last_synced_at,
        comments_synced_at=comments_synced_at,
    )
    session.add(cursor)
    return cursor


# -----------------------------------------------------------------------------
# Record Factories
# -----------------------------------------------------------------------------
def make_work_item_record(
    *,
    id: int = 42,
    rev: int = 1,
    title: str = "Investigate login timeout",
    state: str | None = "Active",
    work_item_type: str | None = "Bug",
    changed_date: datetime | None = JAN_15,
    comment_count: int = 0,
    fields: dict[str, Any] | None = None,
) -> WorkItemRecord:
    """Create a WorkItemRecord as the sync engine would write it."""
    return WorkItemRecord(
        id=id,
        rev=rev,
        title=title,
        state=state,
        work_item_type=work_item_type,
        changed_date=changed_date,
        comment_count=comment_count,
        fields=fields if fields is not None else {"System.Title": title, "System.State": state},
        raw_json="{}",
    )


def make_comment_record(
    *,
    id: int = 1001,
    work_item_id: int = 42,
    text: str = "Repro steps attached",
    modified_date: datetime | None = JAN_15,
    created_by: str | None = "dev@contoso.com",
) -> CommentRecord:
    """Create a CommentRecord as the sync engine would write it."""
    return CommentRecord(
        id=id,
        work_item_id=work_item_id,
        text=text,
        created_by=created_by,
        created_date=modified_date,
        modified_date=modified_date,
        version=1,
    )


# -----------------------------------------------------------------------------
# Azure DevOps API Payload Factories
# -----------------------------------------------------------------------------
def make_identity(
    display_name: str = "Dana Developer",
    unique_name: str = "dana@contoso.com",
) -> dict[str, Any]:
    """Create an identity reference dict (System.AssignedTo, createdBy, ...)."""
    return {
        "displayName": display_name,
        "uniqueName": unique_name,
        "id": f"id-{unique_name}",
    }


def make_work_item_payload(
    id: int = 42,
    *,
    rev: int = 1,
    title: str | None = None,
    state: str = "Active",
    work_item_type: str = "Bug",
    assigned_to: dict[str, Any] | None = None,
    created_date: str = JAN_10_ISO,
    changed_date: str = JAN_15_ISO,
    comment_count: int = 0,
    extra_fields: dict[str, Any] | None = None,
    relations: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Create a work item API response dict.

    This matches the structure returned by:
    GET {org}/{project}/_apis/wit/workitems/{id}
    """
    fields: dict[str, Any] = {
        "System.Id": id,
        "System.TeamProject": TEST_PROJECT,
        "System.AreaPath": f"{TEST_PROJECT}\\Web",
        "System.IterationPath": f"{TEST_PROJECT}\\Sprint 12",
        "System.WorkItemType": work_item_type,
        "System.State": state,
        "System.Title": title or f"Work item {id}",
        "System.AssignedTo": assigned_to or make_identity(),
        "System.CreatedDate": created_date,
        "System.ChangedDate": changed_date,
        "System.CommentCount": comment_count,
        "Microsoft.VSTS.Common.Priority": 2,
    }
    fields.update(extra_fields or {})
    payload: dict[str, Any] = {
        "id": id,
        "rev": rev,
        "fields": fields,
        "url": f"https://dev.azure.com/{TEST_ORG}/_apis/wit/workItems/{id}",
    }
    if relations is not None:
        payload["relations"] = relations
    return payload


def make_comment_payload(
    id: int = 1001,
    *,
    work_item_id: int = 42,
    text: str = "Repro steps attached",
    created_date: str = JAN_15_ISO,
    modified_date: str | None = None,
    version: int = 1,
    created_by: dict[str, Any] | None = None,
    is_deleted: bool = False,
) -> dict[str, Any]:
    """Create a comment API response dict.

    This matches the structure returned by:
    GET {org}/{project}/_apis/wit/workItems/{id}/comments
    """
    author = created_by or make_identity()
    return {
        "id": id,
        "workItemId": work_item_id,
        "version": version,
        "text": text,
        "createdBy": author,
        "createdDate": created_date,
        "modifiedBy": author,
        "modifiedDate": modified_date or created_date,
        "isDeleted": is_deleted,
        "url": (
            f"https://dev.azure.com/{TEST_ORG}/{TEST_PROJECT}/_apis/wit/workItems/"
            f"{work_item_id}/comments/{id}"
        ),
    }
