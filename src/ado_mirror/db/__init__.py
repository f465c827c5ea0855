"""Database module for ADO Mirror."""

from ado_mirror.db.engine import (
    create_session_factory,
    create_tables,
    dispose_engine,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from ado_mirror.db.models import (
    Base,
    SyncCursor,
    UTCDateTime,
    WorkItem,
    WorkItemComment,
)
from ado_mirror.db.repositories import (
    BaseRepository,
    CommentRepository,
    SyncCursorRepository,
    UpsertOutcome,
    WorkItemRepository,
)

__all__ = [
    # Models
    "Base",
    "SyncCursor",
    "UTCDateTime",
    "WorkItem",
    "WorkItemComment",
    # Engine
    "create_session_factory",
    "create_tables",
    "dispose_engine",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Repositories
    "BaseRepository",
    "CommentRepository",
    "SyncCursorRepository",
    "UpsertOutcome",
    "WorkItemRepository",
]
