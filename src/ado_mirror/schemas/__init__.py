"""Pydantic schemas for ADO Mirror.

This module provides API payload parsing and local record models.
"""

from .azure_devops_api import (
    AzureDevOpsComment,
    AzureDevOpsIdentity,
    AzureDevOpsWorkItem,
    WorkItemReference,
    WorkItemRelation,
    identity_label,
)
from .base import SchemaBase, stable_hash
from .records import CommentRecord, WorkItemRead, WorkItemRecord

__all__ = [
    # Azure DevOps API
    "AzureDevOpsComment",
    "AzureDevOpsIdentity",
    "AzureDevOpsWorkItem",
    "WorkItemReference",
    "WorkItemRelation",
    "identity_label",
    # Base
    "SchemaBase",
    "stable_hash",
    # Records
    "CommentRecord",
    "WorkItemRead",
    "WorkItemRecord",
]
