"""Task model."""
from sqlalchemy import Boolean, Column, String, DateTime, Text, Enum as SQLEnum
import uuid
from enum import Enum
from tasksync.database import Base
from tasksync.db.types import GUID
from tasksync.utils.clock import utcnow


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class Task(Base):
    """Local task (can be synced with a calendar event)."""

    __tablename__ = "tasks"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    due_date = Column(DateTime, nullable=True)
    calendar_sync_enabled = Column(Boolean, default=False, nullable=False)
    calendar_synced_at = Column(DateTime, nullable=True)
    # Link lookups go through the link store keyed by task id; this is a plain reference.
    calendar_link_id = Column(GUID(), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    # Stamped by the CRUD layer on content edits only; sync bookkeeping leaves it alone.
    updated_at = Column(DateTime, default=utcnow, nullable=False)
