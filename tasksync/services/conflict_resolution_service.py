"""Conflict resolution for task/calendar links flagged as conflicted."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID

from dateutil import parser as date_parser
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.config import settings
from tasksync.core.exceptions import (
    InvalidInputError,
    InvalidOperationError,
    NoConflictError,
    NotFoundError,
    RemoteUnavailableError,
)
from tasksync.crud.calendar_sync import calendar_event_link
from tasksync.crud.task import task as task_crud
from tasksync.integrations.google_calendar import (
    CalendarEvent,
    GoogleCalendarIntegration,
    google_calendar,
)
from tasksync.middleware.metrics import record_sync
from tasksync.models.calendar_sync import (
    CalendarEventLink,
    ConflictResolutionStrategy,
    SyncDirection,
    SyncStatus,
    SyncType,
)
from tasksync.models.task import Task, TaskStatus
from tasksync.schemas.calendar_sync import (
    ConflictAnalysisResponse,
    ConflictResolutionResponse,
    FieldComparison,
)
from tasksync.services.calendar_sync_service import (
    REMOTE_ERRORS,
    advance_watermark,
    append_history,
    commit_sync,
    compare_fields,
    differing_fields,
    event_fields_from_task,
    jsonable,
    mirror_event,
    parse_strategy,
    record_sync_failure,
)
from tasksync.utils.clock import same_instant, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

TRACKED_FIELDS = ("title", "description", "due_date")
MANUAL_FIELDS = {
    "title": "title",
    "description": "description",
    "status": "status",
    "duedate": "due_date",
}

Resolution = Tuple[List[str], Dict[str, Any]]


def _parse_custom_fields(custom_fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate manual resolution input before anything is mutated; unknown keys are ignored."""
    parsed: Dict[str, Any] = {}
    for key, value in custom_fields.items():
        attr = MANUAL_FIELDS.get(str(key).lower().replace("_", ""))
        if attr is None:
            continue
        if attr == "title":
            if not isinstance(value, str) or not value.strip():
                raise InvalidInputError("Manual resolution title must be a non-empty string")
            parsed[attr] = value
        elif attr == "description":
            parsed[attr] = None if value is None else str(value)
        elif attr == "status":
            try:
                parsed[attr] = TaskStatus(str(value).upper())
            except ValueError:
                raise InvalidInputError(f"Invalid task status: {value}")
        elif attr == "due_date":
            parsed[attr] = _parse_due_date(value)
    return parsed


def _pending_status() -> SyncStatus:
    return SyncStatus.SYNC_PENDING if settings.CALENDAR_AUTO_SYNC_ENABLED else SyncStatus.TASK_MODIFIED


def _parse_due_date(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return to_naive_utc(value)
    try:
        return to_naive_utc(date_parser.isoparse(str(value)))
    except ValueError:
        raise InvalidInputError(f"Invalid due date: {value}")


class ConflictResolutionService:
    """Applies a resolution strategy to both sides of a conflicted link."""

    def __init__(self, calendar_client: Optional[GoogleCalendarIntegration] = None):
        self.calendar = calendar_client or google_calendar

    @staticmethod
    async def _get_task(db: AsyncSession, task_id: UUID) -> Task:
        task_obj = await task_crud.get(db, id=task_id)
        if not task_obj:
            raise NotFoundError(f"Task {task_id} not found")
        return task_obj

    async def resolve_conflict(
        self,
        db: AsyncSession,
        *,
        task_id: UUID,
        strategy: Union[str, ConflictResolutionStrategy],
        custom_fields: Optional[Dict[str, Any]] = None,
    ) -> ConflictResolutionResponse:
        """Reconcile a flagged conflict. A remote failure commits nothing, except MANUAL which defers its push."""
        strategy = parse_strategy(strategy)
        logger.info(f"Resolving conflict for task {task_id} using strategy {strategy.value}")

        task_obj = await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id, for_update=True)
        if link is None or not link.conflict_detected:
            raise NoConflictError()

        manual_fields: Dict[str, Any] = {}
        if strategy == ConflictResolutionStrategy.MANUAL:
            if not custom_fields:
                raise InvalidInputError("Custom resolution data is required for MANUAL strategy")
            manual_fields = _parse_custom_fields(custom_fields)

        now = utcnow()
        try:
            if strategy == ConflictResolutionStrategy.TASK_WINS:
                changed, resolved = await self._resolve_task_wins(task_obj, link, now)
            elif strategy == ConflictResolutionStrategy.CALENDAR_WINS:
                changed, resolved = await self._resolve_calendar_wins(task_obj, link, now)
            elif strategy == ConflictResolutionStrategy.MERGE:
                changed, resolved = await self._resolve_merge(task_obj, link, now)
            elif strategy == ConflictResolutionStrategy.MANUAL:
                changed, resolved = await self._resolve_manually(task_obj, link, manual_fields, now)
            else:
                raise InvalidInputError(f"Unsupported strategy: {strategy}")
        except REMOTE_ERRORS as exc:
            record_sync("resolve", "failed")
            logger.error(f"Failed to resolve conflict for task {task_id}: {exc}")
            await record_sync_failure(
                db,
                task_id=task_id,
                sync_type=SyncType.MANUAL,
                direction=SyncDirection.BIDIRECTIONAL,
                error=str(exc),
                mark_failed=False,
            )
            raise RemoteUnavailableError(f"Failed to resolve conflict: {exc}")

        push_deferred = resolved.pop("push_deferred", False)
        link.conflict_detected = False
        link.sync_status = _pending_status() if push_deferred else SyncStatus.IN_SYNC
        link.conflict_resolution_strategy = strategy
        link.task_last_modified_at = task_obj.updated_at
        advance_watermark(link, now, link.calendar_last_modified_at)
        task_obj.calendar_synced_at = now
        db.add_all([link, task_obj])

        resolved = {"strategy": strategy.value, "changed_fields": changed, **resolved}
        append_history(
            db,
            link,
            sync_type=SyncType.MANUAL,
            direction=SyncDirection.BIDIRECTIONAL,
            status=link.sync_status,
            changes=resolved,
        )
        await commit_sync(db)

        record_sync("resolve", "ok")
        logger.info(f"Conflict resolved for task {task_id} using strategy {strategy.value}")
        return ConflictResolutionResponse(
            task_id=task_id,
            event_id=link.event_id,
            applied_strategy=strategy,
            sync_status=link.sync_status,
            changed_fields=changed,
            resolved_data=jsonable(resolved),
            resolved_at=now,
            message=f"Conflict resolved successfully using {strategy.value} strategy",
        )

    async def _push_task(self, task_obj: Task, link: CalendarEventLink, now: datetime, status: str) -> CalendarEvent:
        fields = event_fields_from_task(task_obj)
        fields["status"] = status
        event = await self.calendar.update_event(link.calendar_id, link.event_id, fields)
        mirror_event(link, event)
        link.calendar_last_modified_at = event.updated or now
        return event

    async def _fetch_remote(self, link: CalendarEventLink) -> CalendarEvent:
        event = await self.calendar.get_event(link.calendar_id, link.event_id)
        if event.updated is not None:
            link.calendar_last_modified_at = event.updated
        return event

    async def _resolve_task_wins(self, task_obj: Task, link: CalendarEventLink, now: datetime) -> Resolution:
        logger.debug(f"Applying TASK_WINS strategy for task {task_obj.id}")
        # Fetched right before the write so a third change is not blindly overwritten.
        current = await self._fetch_remote(link)
        changed = differing_fields(task_obj, current, TRACKED_FIELDS)
        await self._push_task(task_obj, link, now, current.status)
        return changed, {
            "title": task_obj.title,
            "description": task_obj.description,
            "due_date": task_obj.due_date,
            "calendar_updated": bool(changed),
        }

    async def _resolve_calendar_wins(self, task_obj: Task, link: CalendarEventLink, now: datetime) -> Resolution:
        logger.debug(f"Applying CALENDAR_WINS strategy for task {task_obj.id}")
        event = await self._fetch_remote(link)
        changed: List[str] = []
        if event.title is not None and event.title != task_obj.title:
            task_obj.title = event.title
            changed.append("title")
        if (event.description or None) != (task_obj.description or None):
            task_obj.description = event.description
            changed.append("description")
        if event.start is not None and not same_instant(event.start, task_obj.due_date):
            task_obj.due_date = event.start
            changed.append("due_date")
        if changed:
            task_obj.updated_at = now
        mirror_event(link, event)
        return changed, {
            "title": task_obj.title,
            "description": task_obj.description,
            "due_date": task_obj.due_date,
            "task_updated": bool(changed),
        }

    async def _resolve_merge(self, task_obj: Task, link: CalendarEventLink, now: datetime) -> Resolution:
        """Per field, the remote value wins wherever it is present and differs."""
        logger.debug(f"Applying MERGE strategy for task {task_obj.id}")
        event = await self._fetch_remote(link)
        merged: Dict[str, Any] = {}
        for name, (task_value, remote_value, differs) in compare_fields(task_obj, event).items():
            if not differs or remote_value is None:
                continue
            setattr(task_obj, name, remote_value)
            merged[name] = remote_value
        if merged:
            task_obj.updated_at = now
        mirror_event(link, event)
        return list(merged), {"merged_fields": merged, "task_updated": bool(merged)}

    async def _resolve_manually(
        self,
        task_obj: Task,
        link: CalendarEventLink,
        manual_fields: Dict[str, Any],
        now: datetime,
    ) -> Resolution:
        logger.debug(f"Applying MANUAL strategy for task {task_obj.id}")
        changed: List[str] = []
        for attr, value in manual_fields.items():
            current = getattr(task_obj, attr)
            same = same_instant(current, value) if attr == "due_date" else current == value
            if not same:
                setattr(task_obj, attr, value)
                changed.append(attr)
        if changed:
            task_obj.updated_at = now

        resolved = {"custom_changes": manual_fields, "task_updated": bool(changed)}
        # The task is the source of truth here; an unreachable remote only defers the push.
        try:
            current_event = await self._fetch_remote(link)
            status = event_fields_from_task(task_obj)["status"] if "status" in manual_fields else current_event.status
            await self._push_task(task_obj, link, now, status)
        except REMOTE_ERRORS as exc:
            logger.warning(f"Calendar unreachable, deferring push of manual resolution for task {task_obj.id}: {exc}")
            return changed, {**resolved, "calendar_updated": False, "push_deferred": True}
        return changed, {**resolved, "calendar_updated": True}

    async def analyze_conflict(self, db: AsyncSession, *, task_id: UUID) -> ConflictAnalysisResponse:
        """Read-only field comparison between the task and its remote event."""
        logger.info(f"Analyzing conflict for task {task_id}")
        task_obj = await self._get_task(db, task_id)
        link = await calendar_event_link.get_by_task(db, task_id=task_id)
        if link is None:
            raise InvalidOperationError("Task is not synced with calendar")

        try:
            event = await self.calendar.get_event(link.calendar_id, link.event_id)
        except REMOTE_ERRORS as exc:
            logger.error(f"Failed to fetch calendar event for task {task_id}: {exc}")
            raise RemoteUnavailableError(f"Failed to fetch from calendar: {exc}")

        comparison = {
            name: FieldComparison(task_value=task_value, calendar_value=remote_value, differs=differs)
            for name, (task_value, remote_value, differs) in compare_fields(task_obj, event).items()
        }
        return ConflictAnalysisResponse(
            task_id=task_id,
            event_id=link.event_id,
            conflict_detected=link.conflict_detected,
            field_comparison=comparison,
            differing_fields=[name for name, item in comparison.items() if item.differs],
            task_last_modified_at=link.task_last_modified_at,
            calendar_last_modified_at=link.calendar_last_modified_at,
            last_synced_at=link.last_synced_at,
        )


conflict_resolution_service = ConflictResolutionService()
