"""Batch processor for chunked, bounded-concurrency API calls.

Large id sets are de-duplicated, sorted, split into chunks no larger
than the remote batch ceiling, and processed in waves of at most
``max_concurrency`` chunks. A failing chunk is recorded and the rest of
the run continues unless the caller opts into fail-fast.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ado_mirror.config import BATCH_CEILING
from ado_mirror.logging import get_logger

if TYPE_CHECKING:
    from ado_mirror.azure_devops.rate_limit import RateLimiter

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


@dataclass
class BatchJob(Generic[K]):
    """An ordered, de-duplicated id list with its chunking parameters."""

    items: list[K]
    batch_size: int = BATCH_CEILING
    max_concurrency: int = 3

    @classmethod
    def create(
        cls,
        items: Iterable[K],
        batch_size: int = BATCH_CEILING,
        max_concurrency: int = 3,
    ) -> BatchJob[K]:
        """Build a job, removing duplicates and sorting the items."""
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        return cls(
            items=sorted(set(items)),  # type: ignore[type-var]
            batch_size=batch_size,
            max_concurrency=max_concurrency,
        )

    @property
    def chunks(self) -> list[list[K]]:
        return [
            self.items[start : start + self.batch_size]
            for start in range(0, len(self.items), self.batch_size)
        ]

    @property
    def rounds(self) -> int:
        """Number of concurrent waves needed to process every chunk."""
        return math.ceil(len(self.chunks) / self.max_concurrency)


@dataclass
class ChunkFailure(Generic[K]):
    """A chunk whose worker raised."""

    index: int
    items: list[K]
    error: Exception


@dataclass
class BatchResult(Generic[R]):
    """Result of a batch operation."""

    succeeded: list[R] = field(default_factory=list)
    failed: list[ChunkFailure[Any]] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        """Number of results produced by successful chunks."""
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        """Number of failed chunks."""
        return len(self.failed)

    @property
    def failed_items(self) -> list[Any]:
        """Every item that belonged to a failed chunk."""
        return [item for failure in self.failed for item in failure.items]

    @property
    def all_succeeded(self) -> bool:
        """Whether all chunks succeeded."""
        return len(self.failed) == 0


class BatchProcessor(Generic[K, R]):
    """Runs a chunk worker over an id set with bounded fan-out.

    Usage:
        processor = BatchProcessor(batch_size=200, max_concurrency=3)

        async def fetch(chunk: list[int]) -> list[WorkItem]:
            return await client.get_work_items_batch(chunk)

        result = await processor.process_batches([5, 3, 3, 9], fetch)
        for item in result.succeeded:
            print(item.id)
    """

    def __init__(
        self,
        batch_size: int = BATCH_CEILING,
        max_concurrency: int = 3,
        rate_limiter: RateLimiter | None = None,
        fail_fast: bool = False,
    ) -> None:
        """Initialize the batch processor.

        Args:
            batch_size: Maximum items per chunk
            max_concurrency: Maximum chunks in flight at once
            rate_limiter: Optional limiter each chunk call is admitted through
            fail_fast: If True, raise the first chunk error once its wave completes
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency
        self._rate_limiter = rate_limiter
        self._fail_fast = fail_fast

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def create_job(self, items: Iterable[K]) -> BatchJob[K]:
        return BatchJob.create(items, self._batch_size, self._max_concurrency)

    async def process_batches(
        self,
        items: Iterable[K],
        worker: Callable[[list[K]], Awaitable[Sequence[R]]],
    ) -> BatchResult[R]:
        """Process all items chunk by chunk.

        Args:
            items: Ids to process (duplicates removed, then sorted)
            worker: Async function mapping one chunk to its outputs

        Returns:
            BatchResult with the outputs of successful chunks and the failures

        Raises:
            Exception: The first chunk error, only when fail_fast is set
        """
        job = self.create_job(items)
        result: BatchResult[R] = BatchResult()
        chunks = job.chunks
        if not chunks:
            return result

        logger.debug(
            "Processing {} item(s) in {} chunk(s) over {} round(s)",
            len(job.items),
            len(chunks),
            job.rounds,
        )

        for wave_start in range(0, len(chunks), self._max_concurrency):
            wave = chunks[wave_start : wave_start + self._max_concurrency]
            outcomes = await asyncio.gather(
                *(self._run_chunk(chunk, worker) for chunk in wave),
                return_exceptions=True,
            )

            wave_failures: list[ChunkFailure[K]] = []
            for offset, (chunk, outcome) in enumerate(zip(wave, outcomes, strict=True)):
                if isinstance(outcome, Exception):
                    wave_failures.append(ChunkFailure(wave_start + offset, chunk, outcome))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.succeeded.extend(outcome)

            for failure in wave_failures:
                logger.warning(
                    "Chunk {} ({} item(s)) failed: {}",
                    failure.index,
                    len(failure.items),
                    failure.error,
                )
            result.failed.extend(wave_failures)

            if self._fail_fast and wave_failures:
                raise wave_failures[0].error

        return result

    async def _run_chunk(
        self,
        chunk: list[K],
        worker: Callable[[list[K]], Awaitable[Sequence[R]]],
    ) -> Sequence[R]:
        if self._rate_limiter is not None:
            return await self._rate_limiter.execute(lambda: worker(chunk))
        return await worker(chunk)

    def get_batch_stats(self, total_items: int) -> dict[str, int]:
        """Describe how a run over ``total_items`` unique ids would be split."""
        batches = math.ceil(total_items / self._batch_size) if total_items > 0 else 0
        return {
            "total_items": total_items,
            "batches": batches,
            "concurrent_rounds": math.ceil(batches / self._max_concurrency),
        }
