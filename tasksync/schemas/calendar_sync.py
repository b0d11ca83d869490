"""Calendar sync schemas."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tasksync.models.calendar_sync import (
    ConflictResolutionStrategy,
    SyncDirection,
    SyncStatus,
    SyncType,
)


class EnableSyncRequest(BaseModel):
    """Link a task with a calendar event."""

    task_id: UUID
    calendar_id: Optional[str] = None
    conflict_resolution_strategy: Optional[ConflictResolutionStrategy] = None


class SyncEnabledResponse(BaseModel):
    task_id: UUID
    event_id: str
    calendar_id: str
    synced_at: datetime
    sync_status: SyncStatus
    conflict_detected: bool
    message: str


class DisableSyncRequest(BaseModel):
    """Unlink a task, optionally deleting the remote event."""

    task_id: UUID
    delete_calendar_event: bool = False


class SyncDisabledResponse(BaseModel):
    task_id: UUID
    event_id: str
    calendar_event_deleted: bool
    disabled_at: datetime
    message: str


class SyncResponse(BaseModel):
    """Outcome of a push or pull."""

    task_id: UUID
    event_id: str
    sync_status: SyncStatus
    conflict_detected: bool
    changes_applied: Dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime
    message: str


class SyncStatusResponse(BaseModel):
    task_id: UUID
    event_id: str
    calendar_id: str
    sync_status: SyncStatus
    conflict_detected: bool
    conflict_resolution_strategy: ConflictResolutionStrategy
    task_last_modified_at: Optional[datetime] = None
    calendar_last_modified_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    calendar_watermark_at: Optional[datetime] = None


class SyncHistoryResponse(BaseModel):
    """One sync history record."""

    id: UUID
    sync_type: SyncType
    sync_direction: SyncDirection
    sync_status: SyncStatus
    changes_applied: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    synced_at: datetime

    class Config:
        from_attributes = True


class ConflictResolutionRequest(BaseModel):
    """Resolve a flagged conflict with a strategy."""

    task_id: UUID
    strategy: ConflictResolutionStrategy
    custom_resolution: Optional[Dict[str, Any]] = None


class ConflictResolutionResponse(BaseModel):
    task_id: UUID
    event_id: str
    applied_strategy: ConflictResolutionStrategy
    sync_status: SyncStatus
    changed_fields: List[str]
    resolved_data: Dict[str, Any]
    resolved_at: datetime
    message: str


class FieldComparison(BaseModel):
    task_value: Optional[Any] = None
    calendar_value: Optional[Any] = None
    differs: bool


class ConflictAnalysisResponse(BaseModel):
    """Read-only, field-by-field comparison of a task and its remote event."""

    task_id: UUID
    event_id: str
    conflict_detected: bool
    field_comparison: Dict[str, FieldComparison]
    differing_fields: List[str]
    task_last_modified_at: Optional[datetime] = None
    calendar_last_modified_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None


class BulkSyncDirection(str, Enum):
    TASK_TO_CALENDAR = "TASK_TO_CALENDAR"
    CALENDAR_TO_TASK = "CALENDAR_TO_TASK"


class BulkSyncRequest(BaseModel):
    task_ids: List[UUID] = Field(..., min_length=1)
    direction: BulkSyncDirection = BulkSyncDirection.TASK_TO_CALENDAR


class BulkSyncItem(BaseModel):
    task_id: UUID
    ok: bool
    sync_status: Optional[SyncStatus] = None
    error: Optional[str] = None


class BulkSyncResponse(BaseModel):
    total_tasks: int
    succeeded: int
    failed: int
    results: List[BulkSyncItem]


class SweepResult(BaseModel):
    """Counts reported by a scheduled sweep."""

    sweep: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False


class SyncStatisticsResponse(BaseModel):
    total_links: int
    in_sync_count: int
    pending_count: int
    conflicted_count: int
    failed_count: int
    failed_attempts: int
    success_rate: float
