"""Schema modules."""
from tasksync.schemas.task import TaskCreate, TaskUpdate, TaskResponse
from tasksync.schemas.calendar_sync import (
    EnableSyncRequest,
    SyncEnabledResponse,
    DisableSyncRequest,
    SyncDisabledResponse,
    SyncResponse,
    SyncStatusResponse,
    SyncHistoryResponse,
    ConflictResolutionRequest,
    ConflictResolutionResponse,
    ConflictAnalysisResponse,
    BulkSyncRequest,
    BulkSyncResponse,
    SweepResult,
    SyncStatisticsResponse,
)
