"""Repository pattern implementation for database access.

This module provides repository classes that encapsulate all database
access logic, providing a clean abstraction over SQLAlchemy models.
"""

from .base import BaseRepository
from .comment import CommentRepository
from .sync_cursor import SyncCursorRepository
from .work_item import UpsertOutcome, WorkItemRepository

__all__ = [
    "BaseRepository",
    "CommentRepository",
    "SyncCursorRepository",
    "UpsertOutcome",
    "WorkItemRepository",
]
