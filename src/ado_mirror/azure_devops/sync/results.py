"""Result objects for sync operations.

Structured results provide consistent interfaces for monitoring,
error handling, and CLI output.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..classifier import ErrorClassifier
from .enums import SyncPhase, SyncStrategy


def describe_error(error: BaseException) -> str:
    """One-line description of an error for status reports."""
    summary = ErrorClassifier.summarize(error)
    return f"{summary['type']}: {summary['message']}"


@dataclass
class SyncPassResult:
    """Result of one sync pass.

    Aggregates per work item outcomes. Failed work items are listed with
    their error; every other work item had its cursor advanced or needed
    no write.
    """

    strategy: SyncStrategy = SyncStrategy.FULL
    started_at: datetime | None = None
    finished_at: datetime | None = None

    phase: SyncPhase = SyncPhase.IDLE
    """Final phase (done, partial_failure or failed once the pass ends)."""

    discovered: int = 0
    """Work item ids returned by discovery."""

    fetched: int = 0
    """Work items whose details were fetched."""

    created: int = 0
    updated: int = 0

    restored: int = 0
    """Tombstoned work items that reappeared in discovery."""

    skipped_unchanged: int = 0
    """Work items skipped because their content signature matched the cursor."""

    skipped_stale: int = 0
    """Work items skipped because the fetched revision was older than the stored one."""

    deleted_ids: list[int] = field(default_factory=list)
    """Work items soft-deleted because discovery no longer lists them."""

    purged_ids: list[int] = field(default_factory=list)
    """Tombstones older than the retention window that were physically removed."""

    comment_items_synced: int = 0
    """Work items whose comments were checked and their cursor advanced."""

    comments_written: int = 0
    """Comments created or rewritten because their content hash changed."""

    failures: dict[int, str] = field(default_factory=dict)
    """Work item id -> error description."""

    failure_details: dict[int, dict[str, Any]] = field(default_factory=dict)
    """Work item id -> classifier summary of the error."""

    error: str | None = None
    """Pass-level error that stopped the pass (discovery failure, database error)."""

    def record_failure(self, work_item_id: int, error: BaseException) -> None:
        summary = ErrorClassifier.summarize(error)
        self.failure_details[work_item_id] = summary
        self.failures[work_item_id] = f"{summary['type']}: {summary['message']}"

    @property
    def written(self) -> int:
        """Work item rows created, updated or restored."""
        return self.created + self.updated + self.restored

    @property
    def synced(self) -> int:
        """Work items processed without error (written or found up to date)."""
        return self.written + self.skipped_unchanged + self.skipped_stale

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        """True if the pass finished without pass-level or per-item errors."""
        return self.phase == SyncPhase.DONE

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "strategy": self.strategy.value,
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "discovered": self.discovered,
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "restored": self.restored,
            "skipped_unchanged": self.skipped_unchanged,
            "skipped_stale": self.skipped_stale,
            "deleted": list(self.deleted_ids),
            "purged": list(self.purged_ids),
            "comment_items_synced": self.comment_items_synced,
            "comments_written": self.comments_written,
            "synced": self.synced,
            "failed": self.failed_count,
            "failures": [
                {
                    "work_item_id": work_item_id,
                    "error": self.failures[work_item_id],
                    "retryable": detail["retryable"],
                    "status_code": detail["status_code"],
                }
                for work_item_id, detail in sorted(self.failure_details.items())
            ],
            "error": self.error,
        }
