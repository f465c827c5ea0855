"""Enums for sync operations."""

from enum import Enum


class SyncStrategy(str, Enum):
    """Strategy for a sync pass.

    Different strategies trade off between completeness and efficiency.
    """

    FULL = "full"
    """Discover every work item in the project, sweep deletions and purge tombstones."""

    INCREMENTAL = "incremental"
    """Discover work items changed since the newest cursor. No deletion sweep."""


class SyncPhase(str, Enum):
    """Where a sync pass currently is.

    A pass moves idle -> discovering -> fetching -> diffing -> writing ->
    comments and ends in done, partial_failure or failed.
    """

    IDLE = "idle"
    DISCOVERING = "discovering"
    FETCHING = "fetching"
    DIFFING = "diffing"
    WRITING = "writing"
    COMMENTS = "comments"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"
    """Pass finished, but some work items failed and were left for the next pass."""

    FAILED = "failed"
    """Pass aborted before any work item was processed (e.g. discovery failed)."""


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""
