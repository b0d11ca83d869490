"""Sync link store and sync history log."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.crud.base import CRUDBase
from tasksync.models.calendar_sync import CalendarEventLink, SyncHistoryRecord, SyncStatus
from tasksync.models.task import Task


class CRUDCalendarEventLink(CRUDBase[CalendarEventLink, dict, dict]):
    """Data access for task/event links. Never commits; callers own the transaction."""

    async def get_by_task(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        for_update: bool = False,
    ) -> Optional[CalendarEventLink]:
        """Get the link of a task, optionally locking the row until commit."""
        query = select(CalendarEventLink).where(CalendarEventLink.task_id == task_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_task_ids_by_status(
        self,
        db: AsyncSession,
        *,
        statuses: Iterable[SyncStatus],
        exclude_conflicted: bool = False,
    ) -> List[UUID]:
        """Task ids of sync-enabled tasks whose link is in one of ``statuses``."""
        query = (
            select(CalendarEventLink.task_id)
            .join(Task, Task.id == CalendarEventLink.task_id)
            .where(
                CalendarEventLink.sync_status.in_(list(statuses)),
                Task.calendar_sync_enabled == True,  # noqa: E712
            )
        )
        if exclude_conflicted:
            query = query.where(CalendarEventLink.conflict_detected == False)  # noqa: E712
        result = await db.execute(query.order_by(CalendarEventLink.last_synced_at))
        return list(result.scalars().all())

    async def get_conflicted_task_ids(self, db: AsyncSession) -> List[UUID]:
        """Task ids of sync-enabled tasks whose link is flagged as conflicted."""
        result = await db.execute(
            select(CalendarEventLink.task_id)
            .join(Task, Task.id == CalendarEventLink.task_id)
            .where(
                CalendarEventLink.conflict_detected == True,  # noqa: E712
                Task.calendar_sync_enabled == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def get_all_task_ids(self, db: AsyncSession, *, exclude_conflicted: bool = False) -> List[UUID]:
        """Task ids of every sync-enabled linked task."""
        query = (
            select(CalendarEventLink.task_id)
            .join(Task, Task.id == CalendarEventLink.task_id)
            .where(Task.calendar_sync_enabled == True)  # noqa: E712
        )
        if exclude_conflicted:
            query = query.where(CalendarEventLink.conflict_detected == False)  # noqa: E712
        result = await db.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self, db: AsyncSession) -> Dict[SyncStatus, int]:
        result = await db.execute(
            select(CalendarEventLink.sync_status, func.count()).group_by(CalendarEventLink.sync_status)
        )
        counts = {status: 0 for status in SyncStatus}
        for status, count in result.all():
            counts[SyncStatus(status)] = int(count)
        return counts

    async def count_conflicted(self, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(CalendarEventLink)
            .where(CalendarEventLink.conflict_detected == True)  # noqa: E712
        )
        return int(result.scalar_one())

    async def delete_link(self, db: AsyncSession, *, link: CalendarEventLink) -> None:
        """Delete a link together with its history records."""
        await db.execute(delete(SyncHistoryRecord).where(SyncHistoryRecord.link_id == link.id))
        await db.delete(link)
        await db.flush()


class CRUDSyncHistory(CRUDBase[SyncHistoryRecord, dict, dict]):
    """Append-only sync history (records are never updated)."""

    def append(self, db: AsyncSession, *, record: SyncHistoryRecord) -> SyncHistoryRecord:
        db.add(record)
        return record

    async def get_by_link(
        self,
        db: AsyncSession,
        *,
        link_id: UUID,
        skip: int = 0,
        limit: int = 100,
    ) -> List[SyncHistoryRecord]:
        """History of a link, newest first."""
        result = await db.execute(
            select(SyncHistoryRecord)
            .where(SyncHistoryRecord.link_id == link_id)
            .order_by(SyncHistoryRecord.synced_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_failed(self, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(SyncHistoryRecord)
            .where(SyncHistoryRecord.sync_status == SyncStatus.SYNC_FAILED)
        )
        return int(result.scalar_one())


calendar_event_link = CRUDCalendarEventLink(CalendarEventLink)
sync_history = CRUDSyncHistory(SyncHistoryRecord)
