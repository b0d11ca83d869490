"""Model modules."""
from tasksync.models.task import Task, TaskStatus
from tasksync.models.calendar_sync import (
    CalendarEventLink,
    ConflictResolutionStrategy,
    SyncDirection,
    SyncHistoryRecord,
    SyncStatus,
    SyncType,
)

__all__ = [
    "Task",
    "TaskStatus",
    "CalendarEventLink",
    "ConflictResolutionStrategy",
    "SyncDirection",
    "SyncHistoryRecord",
    "SyncStatus",
    "SyncType",
]
