"""Calendar sync API endpoints."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.database import get_db
from tasksync.models.calendar_sync import SyncType
from tasksync.schemas.calendar_sync import (
    BulkSyncRequest,
    BulkSyncResponse,
    ConflictAnalysisResponse,
    ConflictResolutionRequest,
    ConflictResolutionResponse,
    DisableSyncRequest,
    EnableSyncRequest,
    SyncDisabledResponse,
    SyncEnabledResponse,
    SyncHistoryResponse,
    SyncResponse,
    SyncStatisticsResponse,
    SyncStatusResponse,
)
from tasksync.services.calendar_sync_service import calendar_sync_service
from tasksync.services.conflict_resolution_service import conflict_resolution_service
from tasksync.services.sync_sweep_service import sync_sweep_service

router = APIRouter()


@router.post("/enable", response_model=SyncEnabledResponse)
async def enable_sync(request: EnableSyncRequest, db: AsyncSession = Depends(get_db)):
    """Create a calendar event for the task and start syncing it."""
    return await calendar_sync_service.enable_sync(
        db,
        task_id=request.task_id,
        calendar_id=request.calendar_id,
        strategy=request.conflict_resolution_strategy,
    )


@router.post("/disable", response_model=SyncDisabledResponse)
async def disable_sync(request: DisableSyncRequest, db: AsyncSession = Depends(get_db)):
    """Stop syncing the task, optionally deleting its calendar event."""
    return await calendar_sync_service.disable_sync(
        db,
        task_id=request.task_id,
        delete_remote_event=request.delete_calendar_event,
    )


@router.post("/sync-to-calendar/{task_id}", response_model=SyncResponse)
async def sync_to_calendar(task_id: UUID, db: AsyncSession = Depends(get_db)):
    """Push task changes to the calendar."""
    return await calendar_sync_service.sync_task_to_calendar(db, task_id=task_id, sync_type=SyncType.MANUAL)


@router.post("/sync-from-calendar/{task_id}", response_model=SyncResponse)
async def sync_from_calendar(task_id: UUID, db: AsyncSession = Depends(get_db)):
    """Pull calendar changes into the task."""
    return await calendar_sync_service.sync_calendar_to_task(db, task_id=task_id, sync_type=SyncType.MANUAL)


@router.get("/status/{task_id}", response_model=SyncStatusResponse)
async def get_sync_status(task_id: UUID, db: AsyncSession = Depends(get_db)):
    return await calendar_sync_service.get_sync_status(db, task_id=task_id)


@router.get("/history/{task_id}", response_model=List[SyncHistoryResponse])
async def get_sync_history(
    task_id: UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Sync history of a task, newest first."""
    return await calendar_sync_service.get_sync_history(db, task_id=task_id, skip=skip, limit=limit)


@router.post("/resolve-conflict", response_model=ConflictResolutionResponse)
async def resolve_conflict(request: ConflictResolutionRequest, db: AsyncSession = Depends(get_db)):
    """Resolve a detected conflict with the given strategy."""
    return await conflict_resolution_service.resolve_conflict(
        db,
        task_id=request.task_id,
        strategy=request.strategy,
        custom_fields=request.custom_resolution,
    )


@router.get("/analyze-conflict/{task_id}", response_model=ConflictAnalysisResponse)
async def analyze_conflict(task_id: UUID, db: AsyncSession = Depends(get_db)):
    """Compare the task with its calendar event field by field."""
    return await conflict_resolution_service.analyze_conflict(db, task_id=task_id)


@router.post("/bulk-sync", response_model=BulkSyncResponse)
async def bulk_sync(request: BulkSyncRequest, db: AsyncSession = Depends(get_db)):
    """Sync several tasks in one direction."""
    return await calendar_sync_service.bulk_sync(db, task_ids=request.task_ids, direction=request.direction)


@router.get("/statistics", response_model=SyncStatisticsResponse)
async def get_statistics(db: AsyncSession = Depends(get_db)):
    return await sync_sweep_service.get_sync_statistics(db)
