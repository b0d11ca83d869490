"""Tasks API endpoints."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.core.exceptions import NotFoundError
from tasksync.crud.task import task
from tasksync.database import get_db
from tasksync.schemas.task import TaskCreate, TaskResponse, TaskUpdate
from tasksync.services.calendar_sync_service import calendar_sync_service

router = APIRouter()


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(task_in: TaskCreate, db: AsyncSession = Depends(get_db)):
    """Create a task."""
    return await task.create(db, obj_in=task_in)


@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List tasks."""
    return await task.get_multi(db, skip=skip, limit=limit)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get task by ID."""
    task_obj = await task.get(db, id=task_id)
    if not task_obj:
        raise NotFoundError("Task not found")
    return task_obj


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(task_id: UUID, task_in: TaskUpdate, db: AsyncSession = Depends(get_db)):
    """Update a task; a synced task is queued for the next push."""
    task_obj = await task.get(db, id=task_id)
    if not task_obj:
        raise NotFoundError("Task not found")

    task_obj = await task.update(db, db_obj=task_obj, obj_in=task_in)
    if task_obj.calendar_sync_enabled:
        await calendar_sync_service.mark_task_modified(db, task_id=task_id)
        await db.refresh(task_obj)
    return task_obj


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: UUID, db: AsyncSession = Depends(get_db)):
    """Delete a task together with its calendar link and event."""
    await calendar_sync_service.delete_task(db, task_id=task_id)
