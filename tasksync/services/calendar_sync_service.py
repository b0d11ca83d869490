"""Calendar sync coordinator: link lifecycle, push, pull and conflict detection."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tasksync.config import settings
from tasksync.core.exceptions import (
    AlreadySyncedError,
    ConflictError,
    InvalidInputError,
    InvalidOperationError,
    NotFoundError,
    RemoteUnavailableError,
)
from tasksync.crud.calendar_sync import calendar_event_link, sync_history
from tasksync.crud.task import task as task_crud
from tasksync.integrations.google_calendar import (
    EVENT_CANCELLED,
    EVENT_CONFIRMED,
    CalendarEvent,
    CalendarEventNotFoundError,
    CalendarUnavailableError,
    GoogleCalendarIntegration,
    google_calendar,
)
from tasksync.middleware.metrics import record_sync
from tasksync.models.calendar_sync import (
    CalendarEventLink,
    ConflictResolutionStrategy,
    SyncDirection,
    SyncHistoryRecord,
    SyncStatus,
    SyncType,
)
from tasksync.models.task import Task, TaskStatus
from tasksync.schemas.calendar_sync import (
    BulkSyncDirection,
    BulkSyncItem,
    BulkSyncResponse,
    SyncDisabledResponse,
    SyncEnabledResponse,
    SyncHistoryResponse,
    SyncResponse,
    SyncStatusResponse,
)
from tasksync.utils.clock import latest, same_instant, utcnow

logger = logging.getLogger(__name__)

EVENT_DURATION = timedelta(hours=1)
REMOTE_ERRORS = (CalendarUnavailableError, CalendarEventNotFoundError)

# Fields whose disagreement can raise a conflict. Description is advisory only.
CONFLICT_FIELDS = ("title", "due_date")


def parse_strategy(value: Union[str, ConflictResolutionStrategy, None]) -> ConflictResolutionStrategy:
    """Parse a strategy name, raising InvalidInputError for unknown values."""
    if isinstance(value, ConflictResolutionStrategy):
        return value
    try:
        return ConflictResolutionStrategy(str(value).upper())
    except ValueError:
        raise InvalidInputError(f"Unknown conflict resolution strategy: {value}")


def jsonable(value: Any) -> Any:
    """Convert values to something the JSON history column can store."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


def event_fields_from_task(task_obj: Task) -> Dict[str, Any]:
    """Remote event fields derived from a task."""
    start = task_obj.due_date
    return {
        "title": task_obj.title,
        "description": task_obj.description,
        "start": start,
        "end": start + EVENT_DURATION if start else None,
        "status": EVENT_CANCELLED if task_obj.status == TaskStatus.COMPLETED else EVENT_CONFIRMED,
    }


def compare_fields(task_obj: Task, event: CalendarEvent) -> Dict[str, Tuple[Any, Any, bool]]:
    """Per-field ``(task value, remote value, differs)`` for the tracked fields."""
    return {
        "title": (task_obj.title, event.title, task_obj.title != event.title),
        "description": (
            task_obj.description,
            event.description,
            (task_obj.description or None) != (event.description or None),
        ),
        "due_date": (task_obj.due_date, event.start, not same_instant(task_obj.due_date, event.start)),
    }


def differing_fields(task_obj: Task, event: CalendarEvent, fields: Sequence[str] = CONFLICT_FIELDS) -> List[str]:
    comparison = compare_fields(task_obj, event)
    return [name for name in fields if comparison[name][2]]


def detect_conflict(task_obj: Task, link: CalendarEventLink, event: CalendarEvent) -> bool:
    """Both sides changed since the watermark and a tracked field disagrees.

    ``link.task_last_modified_at`` / ``link.calendar_last_modified_at`` must
    already be refreshed from their sources. Each side is compared with the
    watermark kept on its own clock.
    """
    if not differing_fields(task_obj, event):
        return False

    watermark = link.last_synced_at
    if watermark is None:
        return False
    calendar_watermark = link.calendar_watermark_at or watermark
    task_modified = link.task_last_modified_at is not None and link.task_last_modified_at > watermark
    calendar_modified = (
        link.calendar_last_modified_at is not None and link.calendar_last_modified_at > calendar_watermark
    )
    return task_modified and calendar_modified


def apply_event_to_task(task_obj: Task, event: CalendarEvent, now: datetime) -> Dict[str, Any]:
    """Copy remote title/description/start/cancellation onto the task; return what changed."""
    changes: Dict[str, Any] = {}
    if event.title is not None and event.title != task_obj.title:
        task_obj.title = event.title
        changes["title"] = event.title
    if (event.description or None) != (task_obj.description or None):
        task_obj.description = event.description
        changes["description"] = event.description
    if event.start is not None and not same_instant(event.start, task_obj.due_date):
        task_obj.due_date = event.start
        changes["due_date"] = event.start
    if event.status == EVENT_CANCELLED and task_obj.status != TaskStatus.COMPLETED:
        task_obj.status = TaskStatus.COMPLETED
        changes["status"] = TaskStatus.COMPLETED
    if changes:
        task_obj.updated_at = now
    return changes


def mirror_event(link: CalendarEventLink, event: CalendarEvent) -> None:
    link.event_title = event.title
    link.event_description = event.description
    link.event_start_time = event.start
    link.event_end_time = event.end


def advance_watermark(
    link: CalendarEventLink,
    now: datetime,
    remote_updated: Optional[datetime] = None,
) -> datetime:
    """Move both watermarks forward; neither moves back.

    ``last_synced_at`` stays on the local clock and ``calendar_watermark_at``
    on the remote's, so skew between the two clocks cannot hide an edit.
    """
    link.last_synced_at = latest(link.last_synced_at, now)
    link.calendar_watermark_at = latest(link.calendar_watermark_at, remote_updated)
    return link.last_synced_at


def append_history(
    db: AsyncSession,
    link: CalendarEventLink,
    *,
    sync_type: SyncType,
    direction: SyncDirection,
    status: SyncStatus,
    changes: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> SyncHistoryRecord:
    return sync_history.append(
        db,
        record=SyncHistoryRecord(
            link_id=link.id,
            task_id=link.task_id,
            sync_type=sync_type,
            sync_direction=direction,
            sync_status=status,
            changes_applied=jsonable(changes) if changes is not None else None,
            error_message=error,
            synced_at=utcnow(),
        ),
    )


async def commit_sync(db: AsyncSession) -> None:
    """Commit one sync unit, turning lost-update races into ConflictError."""
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConflictError("Sync link was modified concurrently, retry the operation") from exc


async def record_sync_failure(
    db: AsyncSession,
    *,
    task_id: UUID,
    sync_type: SyncType,
    direction: SyncDirection,
    error: str,
    mark_failed: bool = True,
) -> None:
    """Discard the in-flight unit, then persist the failure on its own."""
    await db.rollback()
    link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)
    if link is None:
        return
    if mark_failed:
        link.sync_status = SyncStatus.SYNC_FAILED
        db.add(link)
    append_history(
        db,
        link,
        sync_type=sync_type,
        direction=direction,
        status=SyncStatus.SYNC_FAILED,
        error=error,
    )
    await commit_sync(db)


class CalendarSyncService:
    """Orchestrates task <-> calendar synchronization for single tasks."""

    def __init__(self, calendar_client: Optional[GoogleCalendarIntegration] = None):
        self.calendar = calendar_client or google_calendar

    @staticmethod
    async def _get_task(db: AsyncSession, task_id: UUID) -> Task:
        task_obj = await task_crud.get(db, id=task_id)
        if not task_obj:
            raise NotFoundError(f"Task {task_id} not found")
        return task_obj

    async def _get_synced(self, db: AsyncSession, task_id: UUID) -> Tuple[Task, CalendarEventLink]:
        task_obj = await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)
        if link is None or not task_obj.calendar_sync_enabled:
            raise InvalidOperationError("Task is not synced with calendar")
        return task_obj, link

    async def _discard_remote_event(self, calendar_id: str, event_id: str) -> bool:
        """Best-effort remote delete; failures are logged, never raised."""
        try:
            deleted = await self.calendar.delete_event(calendar_id, event_id)
        except REMOTE_ERRORS as exc:
            logger.error(f"Failed to delete calendar event {event_id}: {exc}")
            return False
        if deleted:
            logger.info(f"Calendar event deleted: {event_id}")
        return deleted

    async def enable_sync(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        calendar_id: Optional[str] = None,
        strategy: Union[str, ConflictResolutionStrategy, None] = None,
    ) -> SyncEnabledResponse:
        """Create the remote event and link it to the task."""
        logger.info(f"Enabling calendar sync for task {task_id}")
        task_obj = await self._get_task(db, task_id)
        existing = await calendar_event_link.get_by_task(db, task_id=task_id)
        if existing is not None or task_obj.calendar_link_id is not None:
            raise AlreadySyncedError()

        strategy = parse_strategy(strategy if strategy is not None else settings.CALENDAR_DEFAULT_CONFLICT_STRATEGY)
        calendar_id = calendar_id or settings.CALENDAR_DEFAULT_ID
        fields = event_fields_from_task(task_obj)

        try:
            event = await self.calendar.create_event(calendar_id, fields)
        except REMOTE_ERRORS as exc:
            record_sync("enable", "failed")
            logger.error(f"Failed to create calendar event for task {task_id}: {exc}")
            raise RemoteUnavailableError(f"Failed to sync with calendar: {exc}")

        now = utcnow()
        link = CalendarEventLink(
            task_id=task_obj.id,
            event_id=event.event_id,
            calendar_id=calendar_id,
            sync_status=SyncStatus.IN_SYNC,
            conflict_detected=False,
            conflict_resolution_strategy=strategy,
            task_last_modified_at=task_obj.updated_at,
            calendar_last_modified_at=event.updated or now,
        )
        mirror_event(link, event)
        advance_watermark(link, now, link.calendar_last_modified_at)

        try:
            db.add(link)
            await db.flush()

            task_obj.calendar_sync_enabled = True
            task_obj.calendar_link_id = link.id
            task_obj.calendar_synced_at = now
            db.add(task_obj)

            append_history(
                db,
                link,
                sync_type=SyncType.INITIAL_SYNC,
                direction=SyncDirection.TASK_TO_CALENDAR,
                status=SyncStatus.IN_SYNC,
                changes={"event_id": event.event_id, "calendar_id": calendar_id, **fields},
            )
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            await self._discard_remote_event(calendar_id, event.event_id)
            raise AlreadySyncedError() from exc
        except Exception:
            await db.rollback()
            await self._discard_remote_event(calendar_id, event.event_id)
            raise

        record_sync("enable", "ok")
        logger.info(f"Calendar sync enabled for task {task_id} with event {event.event_id}")
        return SyncEnabledResponse(
            task_id=task_obj.id,
            event_id=event.event_id,
            calendar_id=calendar_id,
            synced_at=link.last_synced_at,
            sync_status=SyncStatus.IN_SYNC,
            conflict_detected=False,
            message="Calendar sync enabled successfully",
        )

    async def sync_task_to_calendar(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        sync_type: SyncType = SyncType.AUTOMATIC,
    ) -> SyncResponse:
        """Push the task's title/description/time range/status onto the remote event."""
        logger.info(f"Syncing task {task_id} to calendar")
        task_obj, link = await self._get_synced(db, task_id)
        fields = event_fields_from_task(task_obj)

        try:
            current = await self.calendar.get_event(link.calendar_id, link.event_id)
            changed = differing_fields(task_obj, current, ("title", "description", "due_date"))
            if current.status != fields["status"]:
                changed.append("status")
            event = await self.calendar.update_event(link.calendar_id, link.event_id, fields)
        except REMOTE_ERRORS as exc:
            record_sync("push", "failed")
            logger.error(f"Failed to sync task {task_id} to calendar: {exc}")
            await record_sync_failure(
                db,
                task_id=task_id,
                sync_type=sync_type,
                direction=SyncDirection.TASK_TO_CALENDAR,
                error=str(exc),
            )
            raise RemoteUnavailableError(f"Failed to sync with calendar: {exc}")

        now = utcnow()
        mirror_event(link, event)
        link.calendar_last_modified_at = event.updated or now
        link.task_last_modified_at = task_obj.updated_at
        synced_at = advance_watermark(link, now, link.calendar_last_modified_at)
        link.sync_status = SyncStatus.IN_SYNC
        link.conflict_detected = False
        task_obj.calendar_synced_at = now
        db.add_all([link, task_obj])

        changes = {
            "changed_fields": changed,
            "title": task_obj.title,
            "status": task_obj.status,
            "due_date": task_obj.due_date,
        }
        append_history(
            db,
            link,
            sync_type=sync_type,
            direction=SyncDirection.TASK_TO_CALENDAR,
            status=SyncStatus.IN_SYNC,
            changes=changes,
        )
        await commit_sync(db)

        record_sync("push", "ok")
        logger.info(f"Task {task_id} synced to calendar")
        return SyncResponse(
            task_id=task_id,
            event_id=link.event_id,
            sync_status=SyncStatus.IN_SYNC,
            conflict_detected=False,
            changes_applied=jsonable(changes),
            synced_at=synced_at,
            message="Task synced to calendar successfully",
        )

    async def sync_calendar_to_task(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        sync_type: SyncType = SyncType.AUTOMATIC,
    ) -> SyncResponse:
        """Pull the remote event onto the task unless both sides changed."""
        logger.info(f"Syncing calendar changes to task {task_id}")
        task_obj, link = await self._get_synced(db, task_id)

        try:
            event = await self.calendar.get_event(link.calendar_id, link.event_id)
        except REMOTE_ERRORS as exc:
            record_sync("pull", "failed")
            logger.error(f"Failed to fetch calendar event for task {task_id}: {exc}")
            await record_sync_failure(
                db,
                task_id=task_id,
                sync_type=sync_type,
                direction=SyncDirection.CALENDAR_TO_TASK,
                error=str(exc),
            )
            raise RemoteUnavailableError(f"Failed to fetch from calendar: {exc}")

        now = utcnow()
        link.task_last_modified_at = task_obj.updated_at
        if event.updated is not None:
            link.calendar_last_modified_at = event.updated

        has_conflict = detect_conflict(task_obj, link, event)
        if has_conflict:
            logger.warning(f"Conflict detected between task {task_id} and event {link.event_id}")
            link.sync_status = SyncStatus.CONFLICT
            link.conflict_detected = True
            changes: Dict[str, Any] = {
                "conflict_detected": True,
                "differing_fields": differing_fields(task_obj, event),
            }
        else:
            applied = apply_event_to_task(task_obj, event, now)
            mirror_event(link, event)
            link.task_last_modified_at = task_obj.updated_at
            link.sync_status = SyncStatus.IN_SYNC
            link.conflict_detected = False
            changes = {"conflict_detected": False, "changed_fields": list(applied), **applied}

        synced_at = advance_watermark(link, now, link.calendar_last_modified_at)
        task_obj.calendar_synced_at = now
        db.add_all([link, task_obj])
        append_history(
            db,
            link,
            sync_type=sync_type,
            direction=SyncDirection.CALENDAR_TO_TASK,
            status=link.sync_status,
            changes=changes,
        )
        await commit_sync(db)

        record_sync("pull", "conflict" if has_conflict else "ok")
        return SyncResponse(
            task_id=task_id,
            event_id=link.event_id,
            sync_status=link.sync_status,
            conflict_detected=has_conflict,
            changes_applied=jsonable(changes),
            synced_at=synced_at,
            message=(
                "Conflict detected - resolution required"
                if has_conflict
                else "Calendar synced to task successfully"
            ),
        )

    async def recheck_conflict(self, db: AsyncSession, *, task_id: UUID) -> SyncStatus:
        """Re-compare a flagged link with its remote event; task fields are never touched.

        The flag is cleared once the tracked fields agree again. Otherwise the
        link stays in CONFLICT until it is resolved.
        """
        task_obj, link = await self._get_synced(db, task_id)
        if not link.conflict_detected:
            await db.rollback()
            return link.sync_status

        try:
            event = await self.calendar.get_event(link.calendar_id, link.event_id)
        except REMOTE_ERRORS as exc:
            record_sync("recheck", "failed")
            logger.error(f"Failed to re-check conflict for task {task_id}: {exc}")
            await record_sync_failure(
                db,
                task_id=task_id,
                sync_type=SyncType.AUTOMATIC,
                direction=SyncDirection.CALENDAR_TO_TASK,
                error=str(exc),
                mark_failed=False,
            )
            raise RemoteUnavailableError(f"Failed to fetch from calendar: {exc}")

        if event.updated is not None:
            link.calendar_last_modified_at = event.updated
        remaining = differing_fields(task_obj, event)
        if remaining:
            db.add(link)
            await commit_sync(db)
            record_sync("recheck", "conflict")
            logger.info(f"Task {task_id} still conflicts on {', '.join(remaining)}")
            return link.sync_status

        now = utcnow()
        mirror_event(link, event)
        link.task_last_modified_at = task_obj.updated_at
        link.sync_status = SyncStatus.IN_SYNC
        link.conflict_detected = False
        advance_watermark(link, now, link.calendar_last_modified_at)
        task_obj.calendar_synced_at = now
        db.add_all([link, task_obj])
        append_history(
            db,
            link,
            sync_type=SyncType.AUTOMATIC,
            direction=SyncDirection.CALENDAR_TO_TASK,
            status=SyncStatus.IN_SYNC,
            changes={"conflict_detected": False, "changed_fields": []},
        )
        await commit_sync(db)

        record_sync("recheck", "ok")
        logger.info(f"Conflict for task {task_id} cleared, both sides agree")
        return SyncStatus.IN_SYNC

    async def disable_sync(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        delete_remote_event: bool = False,
    ) -> SyncDisabledResponse:
        """Tear down the link. Local state converges even if the remote is unreachable."""
        logger.info(f"Disabling calendar sync for task {task_id}")
        task_obj = await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)
        if link is None:
            raise InvalidOperationError("Task is not synced with calendar")

        calendar_id, event_id = link.calendar_id, link.event_id
        task_obj.calendar_sync_enabled = False
        task_obj.calendar_link_id = None
        task_obj.calendar_synced_at = None
        db.add(task_obj)
        await calendar_event_link.delete_link(db, link=link)
        await commit_sync(db)

        # Remote delete runs only after the local teardown is committed.
        deleted = False
        if delete_remote_event:
            deleted = await self._discard_remote_event(calendar_id, event_id)

        record_sync("disable", "ok")
        return SyncDisabledResponse(
            task_id=task_id,
            event_id=event_id,
            calendar_event_deleted=deleted,
            disabled_at=utcnow(),
            message="Calendar sync disabled successfully",
        )

    async def get_sync_status(self, db: AsyncSession, *, task_id: UUID) -> SyncStatusResponse:
        await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id)
        if link is None:
            raise NotFoundError(f"Task {task_id} is not synced with calendar")
        return SyncStatusResponse(
            task_id=task_id,
            event_id=link.event_id,
            calendar_id=link.calendar_id,
            sync_status=link.sync_status,
            conflict_detected=link.conflict_detected,
            conflict_resolution_strategy=link.conflict_resolution_strategy,
            task_last_modified_at=link.task_last_modified_at,
            calendar_last_modified_at=link.calendar_last_modified_at,
            last_synced_at=link.last_synced_at,
            calendar_watermark_at=link.calendar_watermark_at,
        )

    async def get_sync_history(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        skip: int = 0,
        limit: int = 100,
    ) -> List[SyncHistoryResponse]:
        await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id)
        if link is None:
            return []
        records = await sync_history.get_by_link(db, link_id=link.id, skip=skip, limit=limit)
        return [SyncHistoryResponse.model_validate(record) for record in records]

    async def mark_task_modified(self, db: AsyncSession, *, task_id: UUID) -> Optional[SyncStatus]:
        """Flag a linked task as locally edited so the pending sweep pushes it."""
        link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)
        if link is None:
            return None
        if link.sync_status in (SyncStatus.CONFLICT, SyncStatus.SYNC_FAILED):
            return link.sync_status

        link.sync_status = (
            SyncStatus.SYNC_PENDING if settings.CALENDAR_AUTO_SYNC_ENABLED else SyncStatus.TASK_MODIFIED
        )
        db.add(link)
        await commit_sync(db)
        return link.sync_status

    async def delete_task(self, db: AsyncSession, *, task_id: UUID) -> bool:
        """Delete a task, its link and history; remove the remote event best-effort."""
        logger.info(f"Deleting task {task_id} and associated calendar event")
        task_obj = await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)

        remote_event = None
        if link is not None:
            if task_obj.calendar_sync_enabled:
                remote_event = (link.calendar_id, link.event_id)
            await calendar_event_link.delete_link(db, link=link)

        await db.delete(task_obj)
        await commit_sync(db)
        logger.info(f"Task {task_id} deleted")

        if remote_event is None:
            return False
        return await self._discard_remote_event(*remote_event)

    async def bulk_sync(
        self,
        db: AsyncSession,
        *,
        task_ids: Sequence[UUID],
        direction: BulkSyncDirection = BulkSyncDirection.TASK_TO_CALENDAR,
    ) -> BulkSyncResponse:
        """Run push or pull per task; one failure never aborts the batch."""
        results: List[BulkSyncItem] = []
        for task_id in task_ids:
            try:
                if direction == BulkSyncDirection.TASK_TO_CALENDAR:
                    response = await self.sync_task_to_calendar(db, task_id=task_id, sync_type=SyncType.MANUAL)
                else:
                    response = await self.sync_calendar_to_task(db, task_id=task_id, sync_type=SyncType.MANUAL)
                results.append(BulkSyncItem(task_id=task_id, ok=True, sync_status=response.sync_status))
            except HTTPException as exc:
                await db.rollback()
                results.append(BulkSyncItem(task_id=task_id, ok=False, error=str(exc.detail)))
            except Exception as exc:
                logger.error(f"Unexpected error during bulk sync of task {task_id}", exc_info=True)
                await db.rollback()
                results.append(BulkSyncItem(task_id=task_id, ok=False, error=str(exc)))

        succeeded = sum(1 for item in results if item.ok)
        return BulkSyncResponse(
            total_tasks=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )


calendar_sync_service = CalendarSyncService()
