"""Sync Engine - mirrors Azure DevOps work items into the local store.

A pass runs discover -> fetch -> diff -> write -> comments and advances
each work item's cursor only after that item's own write committed.
Every work item is written in its own transaction, so one failing item
never rolls back another and readers with their own sessions are never
blocked behind a whole pass.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ado_mirror.config import SyncConfig, get_settings
from ado_mirror.db.models import utc_now
from ado_mirror.db.repositories import (
    CommentRepository,
    SyncCursorRepository,
    UpsertOutcome,
    WorkItemRepository,
)
from ado_mirror.logging import bind_project, bind_work_item, get_logger
from ado_mirror.schemas import WorkItemRecord

from ..exceptions import AzureDevOpsError
from .enums import SyncPhase, SyncStrategy
from .results import SyncPassResult, describe_error

if TYPE_CHECKING:
    from ado_mirror.schemas import AzureDevOpsComment, AzureDevOpsWorkItem

    from ..client import AzureDevOpsClient

logger = get_logger(__name__)

_ORDER_BY = re.compile(r"\s+ORDER\s+BY\s", re.IGNORECASE)
_WHERE = re.compile(r"\sWHERE\s", re.IGNORECASE)


def build_discovery_query(base_query: str, changed_since: datetime | None = None) -> str:
    """Restrict a WIQL discovery query to items changed since a timestamp.

    WIQL compares dates at day precision unless timePrecision is requested,
    so the predicate uses the UTC date of ``changed_since``; re-reading part
    of a day is harmless because unchanged items are skipped by the diff.
    Existing conditions are parenthesized so an OR in them cannot widen the
    restriction.
    """
    if changed_since is None:
        return base_query
    if changed_since.tzinfo is not None:
        changed_since = changed_since.astimezone(UTC)
    predicate = f"[System.ChangedDate] >= '{changed_since.date().isoformat()}'"

    order_by = _ORDER_BY.search(base_query)
    head = base_query[: order_by.start()] if order_by else base_query
    tail = base_query[order_by.start() :] if order_by else ""

    where = _WHERE.search(head)
    if where is None:
        return f"{head} WHERE {predicate}{tail}"
    conditions = head[where.end() :].strip()
    return f"{head[: where.end()]}({conditions}) AND {predicate}{tail}"


class SyncEngine:
    """Orchestrates sync passes from Azure DevOps into the local store.

    The engine owns its client (and through it the rate limiter, batch
    processor and circuit breakers). Only one pass runs at a time; a
    background task started with ``start()`` runs a full pass every
    ``interval_minutes``.

    Usage:
        async with AzureDevOpsClient() as client:
            engine = SyncEngine(client, get_session_factory())
            await engine.startup()
            engine.start()
            ...
            await engine.stop()
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        session_factory: async_sessionmaker[AsyncSession],
        config: SyncConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the sync engine.

        Args:
            client: Azure DevOps client owned by this engine
            session_factory: Factory for the sessions each write runs in
            config: Sync settings (from Settings if not provided)
            clock: Returns the current aware UTC time
        """
        self._client = client
        self._session_factory = session_factory
        self._config = config or get_settings().sync
        self._clock = clock
        self._pass_lock = asyncio.Lock()
        self._phase = SyncPhase.IDLE
        self._last_result: SyncPassResult | None = None
        self._passes = 0
        self._total_synced = 0
        self._total_failed = 0
        self._loop_task: asyncio.Task[None] | None = None
        self._initial_task: asyncio.Task[SyncPassResult | None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def client(self) -> AzureDevOpsClient:
        return self._client

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def last_result(self) -> SyncPassResult | None:
        return self._last_result

    @property
    def is_syncing(self) -> bool:
        """True while a pass holds the pass lock."""
        return self._pass_lock.locked()

    @property
    def is_running(self) -> bool:
        """True while the background loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def initial_task(self) -> asyncio.Task[SyncPassResult | None] | None:
        """Task running the startup pass, if one was scheduled."""
        return self._initial_task

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    async def run_pass(
        self,
        *,
        strategy: SyncStrategy = SyncStrategy.FULL,
        concurrency: int | None = None,
    ) -> SyncPassResult:
        """Run one sync pass.

        Per item failures are recorded in the result and never abort the
        pass. A discovery failure ends the pass in the failed phase. Any
        other unexpected error is recorded and re-raised.

        Args:
            strategy: Full or incremental discovery
            concurrency: Work items whose comments are fetched concurrently
                (sync config default if not provided)

        Returns:
            SyncPassResult with counts and failed work items
        """
        async with self._pass_lock:
            result = SyncPassResult(strategy=strategy, started_at=self._clock())
            bind_project(self._client.auth.organization, self._client.auth.project).info(
                "Starting {} sync pass", strategy.value
            )
            try:
                await self._execute(result, concurrency or self._config.comment_concurrency)
            except Exception as e:
                result.error = describe_error(e)
                self._set_phase(result, SyncPhase.FAILED)
                self._finish(result)
                logger.exception("Sync pass aborted: {}", e)
                raise
            self._finish(result)
            return result

    async def _execute(self, result: SyncPassResult, concurrency: int) -> None:
        # Discovering
        self._set_phase(result, SyncPhase.DISCOVERING)
        try:
            discovered = await self._discover(result.strategy)
        except AzureDevOpsError as e:
            result.error = describe_error(e)
            self._set_phase(result, SyncPhase.FAILED)
            logger.error("Discovery failed, nothing synced: {}", e)
            return
        result.discovered = len(discovered)

        # Fetching
        self._set_phase(result, SyncPhase.FETCHING)
        fetched = await self._fetch(discovered, result)

        # Diffing
        self._set_phase(result, SyncPhase.DIFFING)
        changed = await self._diff(fetched, result)

        # Writing
        self._set_phase(result, SyncPhase.WRITING)
        synced_at = self._clock()
        for record in changed:
            await self._write_one(record, synced_at, result)
        if result.strategy == SyncStrategy.FULL:
            await self._sweep_deletions(discovered, result)

        # Comments
        self._set_phase(result, SyncPhase.COMMENTS)
        await self._sync_comments(fetched, result, concurrency)

        final = SyncPhase.PARTIAL_FAILURE if result.failures or result.error else SyncPhase.DONE
        self._set_phase(result, final)

    async def _discover(self, strategy: SyncStrategy) -> list[int]:
        changed_since = None
        if strategy == SyncStrategy.INCREMENTAL:
            async with self._session_factory() as session:
                changed_since = await SyncCursorRepository(session).latest_sync_time()
            if changed_since is None:
                logger.info("No cursor yet; incremental pass discovers the whole project")

        query = build_discovery_query(self._config.discovery_query, changed_since)
        refs = await self._client.query_work_items(query)
        ids = list(dict.fromkeys(ref.id for ref in refs))
        logger.info("Discovered {} work items", len(ids))
        return ids

    async def _fetch(
        self, ids: list[int], result: SyncPassResult
    ) -> list[AzureDevOpsWorkItem]:
        if not ids:
            return []
        batch = await self._client.fetch_work_items(ids, expand="All")
        for failure in batch.failed:
            for work_item_id in failure.items:
                result.record_failure(work_item_id, failure.error)
        result.fetched = len(batch.succeeded)

        missing = len(ids) - result.fetched - len(batch.failed_items)
        if missing > 0:
            logger.debug("{} discovered work items were omitted by the server", missing)
        return batch.succeeded

    async def _diff(
        self, items: list[AzureDevOpsWorkItem], result: SyncPassResult
    ) -> list[WorkItemRecord]:
        records: list[WorkItemRecord] = []
        for item in items:
            try:
                records.append(item.to_record())
            except ValueError as e:
                logger.warning("Work item {} has an unusable payload: {}", item.id, e)
                result.record_failure(item.id, e)
        if not records:
            return []

        ids = [record.id for record in records]
        async with self._session_factory() as session:
            cursors = await SyncCursorRepository(session).get_many(ids)
            tombstoned = await WorkItemRepository(session).tombstoned_ids(ids)

        changed: list[WorkItemRecord] = []
        for record in records:
            cursor = cursors.get(record.id)
            if (
                cursor is not None
                and cursor.content_signature == record.content_signature
                and record.id not in tombstoned
            ):
                result.skipped_unchanged += 1
                continue
            changed.append(record)

        logger.info(
            "{} of {} fetched work items changed since their cursor", len(changed), len(records)
        )
        return changed

    async def _write_one(
        self, record: WorkItemRecord, synced_at: datetime, result: SyncPassResult
    ) -> None:
        log = bind_work_item(record.id, operation="write")
        async with self._session_factory() as session:
            try:
                outcome = await WorkItemRepository(session).upsert_record(
                    record, synced_at=synced_at
                )
                if outcome is not UpsertOutcome.STALE:
                    await SyncCursorRepository(session).advance_record(
                        record.id,
                        rev=record.rev,
                        content_signature=record.content_signature,
                        synced_at=synced_at,
                    )
                await session.commit()
            except Exception as e:
                await session.rollback()
                log.warning("Write failed, cursor not advanced: {}", e)
                result.record_failure(record.id, e)
                return

        log.debug("Write outcome: {}", outcome.value)
        if outcome is UpsertOutcome.CREATED:
            result.created += 1
        elif outcome is UpsertOutcome.UPDATED:
            result.updated += 1
        elif outcome is UpsertOutcome.RESTORED:
            result.restored += 1
        else:
            result.skipped_stale += 1

    async def _sweep_deletions(self, discovered: Iterable[int], result: SyncPassResult) -> None:
        """Tombstone tracked ids missing from discovery, then purge expired tombstones."""
        seen = set(discovered)
        now = self._clock()
        async with self._session_factory() as session:
            try:
                repository = WorkItemRepository(session)
                for work_item_id in await repository.list_tracked_ids():
                    if work_item_id not in seen and await repository.mark_deleted(
                        work_item_id, at=now
                    ):
                        result.deleted_ids.append(work_item_id)
                result.purged_ids = await repository.purge_tombstones(
                    now - self._config.tombstone_retention
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                result.deleted_ids.clear()
                result.purged_ids = []
                result.error = describe_error(e)
                logger.exception("Deletion sweep failed: {}", e)
                return

        if result.deleted_ids:
            logger.info(
                "Soft-deleted {} work items no longer in discovery: {}",
                len(result.deleted_ids),
                result.deleted_ids,
            )

    async def _sync_comments(
        self,
        items: list[AzureDevOpsWorkItem],
        result: SyncPassResult,
        concurrency: int,
    ) -> None:
        candidates = {
            item.id: item
            for item in items
            if item.comment_count > 0 and item.id not in result.failures
        }
        if not candidates:
            return

        async with self._session_factory() as session:
            cursors = await SyncCursorRepository(session).get_many(candidates)

        due: list[int] = []
        for work_item_id, item in candidates.items():
            cursor = cursors.get(work_item_id)
            if cursor is None:
                continue
            changed = item.changed_date
            if (
                cursor.comments_synced_at is None
                or changed is None
                or changed > cursor.comments_synced_at
            ):
                due.append(work_item_id)
        if not due:
            logger.debug("No work items need a comment sync")
            return

        logger.info("Syncing comments for {} work items", len(due))
        comments_by_item, failures = await self._client.get_comments_for_many(
            due, concurrency=concurrency
        )
        for failure in failures:
            for work_item_id in failure.items:
                result.record_failure(work_item_id, failure.error)

        for work_item_id in sorted(comments_by_item):
            await self._write_comments(work_item_id, comments_by_item[work_item_id], result)

    async def _write_comments(
        self,
        work_item_id: int,
        comments: list[AzureDevOpsComment],
        result: SyncPassResult,
    ) -> None:
        log = bind_work_item(work_item_id, operation="comments")
        synced_at = self._clock()
        written = 0
        async with self._session_factory() as session:
            try:
                repository = CommentRepository(session)
                stored = await repository.get_hashes(work_item_id)
                for comment in comments:
                    if comment.is_deleted:
                        continue
                    record = comment.to_record()
                    if stored.get(record.id) == record.content_hash:
                        continue
                    await repository.upsert_comment(record, synced_at=synced_at)
                    written += 1
                await SyncCursorRepository(session).advance_comments(
                    work_item_id, synced_at=synced_at
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                log.warning("Comment sync failed, cursor not advanced: {}", e)
                result.record_failure(work_item_id, e)
                return

        result.comment_items_synced += 1
        result.comments_written += written
        if written:
            log.debug("Wrote {} changed comments", written)

    def _set_phase(self, result: SyncPassResult, phase: SyncPhase) -> None:
        self._phase = phase
        result.phase = phase

    def _finish(self, result: SyncPassResult) -> None:
        result.finished_at = self._clock()
        self._last_result = result
        self._passes += 1
        self._total_synced += result.synced
        self._total_failed += result.failed_count
        logger.info(
            "Sync pass {}: discovered={}, created={}, updated={}, restored={}, "
            "unchanged={}, deleted={}, comments_written={}, failed={} ({:.1f}s)",
            result.phase.value,
            result.discovered,
            result.created,
            result.updated,
            result.restored,
            result.skipped_unchanged,
            len(result.deleted_ids),
            result.comments_written,
            result.failed_count,
            result.duration_seconds,
        )

    # -------------------------------------------------------------------------
    # Tool dispatcher surface
    # -------------------------------------------------------------------------

    async def trigger_sync(self, concurrency: int | None = None) -> dict[str, Any]:
        """Run a full pass on demand and report counts synced and failed."""
        result = await self.run_pass(strategy=SyncStrategy.FULL, concurrency=concurrency)
        return {
            "synced": result.synced,
            "failed": result.failed_count,
            "written": result.written,
            "deleted": len(result.deleted_ids),
            "phase": result.phase.value,
            "failed_ids": sorted(result.failures),
        }

    def get_sync_status(self) -> dict[str, Any]:
        """Report the last pass and the client's breaker and quota state."""
        last = self._last_result
        return {
            "phase": self._phase.value,
            "syncing": self.is_syncing,
            "background_running": self.is_running,
            "last_pass_at": last.finished_at.isoformat() if last and last.finished_at else None,
            "last_pass": last.to_dict() if last else None,
            "passes": self._passes,
            "total_synced": self._total_synced,
            "total_failed": self._total_failed,
            "circuit_breakers": self._client.get_circuit_states(),
            "rate_limit": self._client.get_rate_limit_status(),
        }

    # -------------------------------------------------------------------------
    # Startup and background schedule
    # -------------------------------------------------------------------------

    async def last_sync_time(self) -> datetime | None:
        """Newest cursor timestamp, or None if nothing was synced yet."""
        async with self._session_factory() as session:
            return await SyncCursorRepository(session).latest_sync_time()

    async def is_stale(self) -> bool:
        """True if the store is empty or older than the staleness threshold."""
        try:
            last_sync = await self.last_sync_time()
        except Exception as e:
            logger.warning("Could not read sync cursors, treating data as stale: {}", e)
            return True
        if last_sync is None:
            return True
        return self._clock() - last_sync >= self._config.staleness_threshold

    async def startup(self) -> bool:
        """Check data freshness and schedule the initial pass if needed.

        Never waits for the pass itself: the read path starts immediately
        and a failing initial pass is logged, not raised.

        Returns:
            True if an initial pass was scheduled
        """
        if not await self.is_stale():
            logger.info("Local data is fresh; skipping initial sync pass")
            return False

        logger.info("Local data is empty or stale; running initial sync pass in background")
        self._initial_task = asyncio.create_task(
            self.run_scheduled_pass(), name="ado-mirror-initial-sync"
        )
        return True

    async def run_scheduled_pass(
        self, strategy: SyncStrategy = SyncStrategy.FULL
    ) -> SyncPassResult | None:
        """Run one pass, logging instead of raising on failure."""
        try:
            return await self.run_pass(strategy=strategy)
        except Exception as e:
            logger.error("Scheduled sync pass failed: {}", e)
            return None

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(), name="ado-mirror-sync-loop")
        logger.info(
            "Background sync started (every {} minutes)", self._config.interval_minutes
        )

    async def stop(self) -> None:
        """Stop the background loop and any startup pass, waiting for them to end."""
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = [t for t in (self._loop_task, self._initial_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._loop_task is not None:
            logger.info("Background sync stopped")
        self._loop_task = None
        self._initial_task = None
        self._stop_event = None

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        interval = self._config.interval.total_seconds()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                await self.run_scheduled_pass()
