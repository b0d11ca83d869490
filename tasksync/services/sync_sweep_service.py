"""Periodic sync sweeps over every linked task."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasksync.config import settings
from tasksync.crud.calendar_sync import calendar_event_link, sync_history
from tasksync.database import AsyncSessionLocal
from tasksync.middleware.metrics import record_sweep_item
from tasksync.models.calendar_sync import SyncStatus, SyncType
from tasksync.schemas.calendar_sync import SweepResult, SyncStatisticsResponse
from tasksync.services.calendar_sync_service import CalendarSyncService, calendar_sync_service

logger = logging.getLogger(__name__)

SweepStep = Callable[[AsyncSession, UUID], Awaitable[object]]


class SyncSweepService:
    """Runs bulk syncs. Each task is processed in its own session so one failure stays isolated."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        sync_service: Optional[CalendarSyncService] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.sync_service = sync_service or calendar_sync_service

    async def _run(self, sweep: str, task_ids: List[UUID], step: SweepStep) -> SweepResult:
        result = SweepResult(sweep=sweep, total=len(task_ids))
        for task_id in task_ids:
            async with self.session_factory() as db:
                try:
                    await step(db, task_id)
                    result.succeeded += 1
                    record_sweep_item(sweep, "ok")
                except Exception as exc:
                    await db.rollback()
                    result.failed += 1
                    record_sweep_item(sweep, "failed")
                    logger.error(f"{sweep}: failed to process task {task_id}: {exc}")
        logger.info(
            f"{sweep} finished: {result.succeeded} succeeded, {result.failed} failed of {result.total}"
        )
        return result

    async def sync_all_pending(self) -> SweepResult:
        """Push every task edited locally since its last sync."""
        if not settings.CALENDAR_AUTO_SYNC_ENABLED:
            logger.debug("Auto-sync disabled, skipping pending sync sweep")
            return SweepResult(sweep="sync_all_pending", skipped=True)

        async with self.session_factory() as db:
            task_ids = await calendar_event_link.get_task_ids_by_status(
                db,
                statuses=[SyncStatus.SYNC_PENDING, SyncStatus.TASK_MODIFIED],
            )
        logger.info(f"Found {len(task_ids)} tasks pending sync")

        async def push(db: AsyncSession, task_id: UUID):
            return await self.sync_service.sync_task_to_calendar(db, task_id=task_id, sync_type=SyncType.AUTOMATIC)

        return await self._run("sync_all_pending", task_ids, push)

    async def check_all_conflicts(self) -> SweepResult:
        """Re-check every flagged link; a conflict clears only once both sides agree."""
        async with self.session_factory() as db:
            task_ids = await calendar_event_link.get_conflicted_task_ids(db)
        logger.info(f"Found {len(task_ids)} conflicted tasks")

        async def recheck(db: AsyncSession, task_id: UUID):
            return await self.sync_service.recheck_conflict(db, task_id=task_id)

        return await self._run("check_all_conflicts", task_ids, recheck)

    async def retry_all_failed(self) -> SweepResult:
        """Re-push links whose last sync failed. Conflicted links wait for resolution."""
        async with self.session_factory() as db:
            task_ids = await calendar_event_link.get_task_ids_by_status(
                db,
                statuses=[SyncStatus.SYNC_FAILED],
                exclude_conflicted=True,
            )
        logger.info(f"Retrying {len(task_ids)} failed syncs")

        async def push(db: AsyncSession, task_id: UUID):
            return await self.sync_service.sync_task_to_calendar(db, task_id=task_id, sync_type=SyncType.AUTOMATIC)

        return await self._run("retry_all_failed", task_ids, push)

    async def full_sync(self) -> SweepResult:
        """Push every sync-enabled link that is not awaiting conflict resolution."""
        async with self.session_factory() as db:
            task_ids = await calendar_event_link.get_all_task_ids(db, exclude_conflicted=True)
        logger.info(f"Full sync initiated for {len(task_ids)} linked tasks")

        async def push(db: AsyncSession, task_id: UUID):
            return await self.sync_service.sync_task_to_calendar(db, task_id=task_id, sync_type=SyncType.MANUAL)

        return await self._run("full_sync", task_ids, push)

    async def get_sync_statistics(self, db: AsyncSession) -> SyncStatisticsResponse:
        counts = await calendar_event_link.count_by_status(db)
        total = sum(counts.values())
        in_sync = counts[SyncStatus.IN_SYNC]
        return SyncStatisticsResponse(
            total_links=total,
            in_sync_count=in_sync,
            pending_count=counts[SyncStatus.SYNC_PENDING] + counts[SyncStatus.TASK_MODIFIED],
            conflicted_count=await calendar_event_link.count_conflicted(db),
            failed_count=counts[SyncStatus.SYNC_FAILED],
            failed_attempts=await sync_history.count_failed(db),
            success_rate=round(in_sync * 100.0 / total, 2) if total else 0.0,
        )


sync_sweep_service = SyncSweepService()
