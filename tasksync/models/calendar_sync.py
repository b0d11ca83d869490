"""Calendar sync models: task/event link and sync history."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Enum as SQLEnum,
)
import uuid
from enum import Enum
from tasksync.database import Base
from tasksync.db.types import GUID, JSONBType
from tasksync.utils.clock import utcnow


class SyncStatus(str, Enum):
    """Sync state of a task/event link."""

    IN_SYNC = "IN_SYNC"
    TASK_MODIFIED = "TASK_MODIFIED"
    CALENDAR_MODIFIED = "CALENDAR_MODIFIED"
    CONFLICT = "CONFLICT"
    SYNC_PENDING = "SYNC_PENDING"
    SYNC_FAILED = "SYNC_FAILED"


class SyncType(str, Enum):
    """What triggered a sync attempt."""

    INITIAL_SYNC = "INITIAL_SYNC"
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"


class SyncDirection(str, Enum):
    """Direction in which data flowed during a sync attempt."""

    TASK_TO_CALENDAR = "TASK_TO_CALENDAR"
    CALENDAR_TO_TASK = "CALENDAR_TO_TASK"
    BIDIRECTIONAL = "BIDIRECTIONAL"


class ConflictResolutionStrategy(str, Enum):
    """How a detected conflict is reconciled."""

    TASK_WINS = "TASK_WINS"
    CALENDAR_WINS = "CALENDAR_WINS"
    MERGE = "MERGE"
    MANUAL = "MANUAL"


class CalendarEventLink(Base):
    """Active sync relationship between one task and one remote calendar event."""

    __tablename__ = "calendar_event_links"
    __table_args__ = (
        UniqueConstraint("calendar_id", "event_id", name="uq_calendar_event_links_event"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    task_id = Column(
        GUID(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    event_id = Column(String(255), nullable=False)
    calendar_id = Column(String(255), nullable=False)

    # Last-known mirror of the remote event
    event_title = Column(String(255), nullable=True)
    event_description = Column(Text, nullable=True)
    event_start_time = Column(DateTime, nullable=True)
    event_end_time = Column(DateTime, nullable=True)

    task_last_modified_at = Column(DateTime, nullable=True)
    calendar_last_modified_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)  # watermark, local clock, never decreases
    # Remote last-modified time as of the last sync, on the calendar's own clock
    calendar_watermark_at = Column(DateTime, nullable=True)

    sync_status = Column(SQLEnum(SyncStatus), nullable=False, default=SyncStatus.IN_SYNC, index=True)
    conflict_detected = Column(Boolean, nullable=False, default=False, index=True)
    conflict_resolution_strategy = Column(
        SQLEnum(ConflictResolutionStrategy),
        nullable=False,
        default=ConflictResolutionStrategy.TASK_WINS,
    )

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class SyncHistoryRecord(Base):
    """Append-only record of one sync attempt."""

    __tablename__ = "sync_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    link_id = Column(
        GUID(), ForeignKey("calendar_event_links.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id = Column(GUID(), nullable=False, index=True)
    sync_type = Column(SQLEnum(SyncType), nullable=False)
    sync_direction = Column(SQLEnum(SyncDirection), nullable=False)
    sync_status = Column(SQLEnum(SyncStatus), nullable=False, index=True)
    changes_applied = Column(JSONBType(), nullable=True)
    error_message = Column(Text, nullable=True)
    synced_at = Column(DateTime, default=utcnow, nullable=False, index=True)
