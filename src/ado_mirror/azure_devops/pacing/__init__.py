"""Batch pacing for Azure DevOps API calls.

This module provides:
- BatchJob: De-duplicated, sorted id list with chunking parameters
- BatchProcessor: Chunked execution in bounded-concurrency waves
- BatchResult / ChunkFailure: Per-chunk success and failure reporting
"""

from .batch import BatchJob, BatchProcessor, BatchResult, ChunkFailure

__all__ = [
    "BatchJob",
    "BatchProcessor",
    "BatchResult",
    "ChunkFailure",
]
