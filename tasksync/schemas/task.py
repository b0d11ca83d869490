"""Task schemas."""
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, field_validator
from datetime import datetime

from tasksync.models.task import TaskStatus
from tasksync.utils.clock import to_naive_utc


class TaskBase(BaseModel):
    """Base task schema."""

    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class TaskCreate(TaskBase):
    """Task creation schema."""

    pass


class TaskUpdate(BaseModel):
    """Partial task update schema."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class TaskResponse(TaskBase):
    """Task response schema."""

    id: UUID
    calendar_sync_enabled: bool
    calendar_synced_at: Optional[datetime] = None
    calendar_link_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
