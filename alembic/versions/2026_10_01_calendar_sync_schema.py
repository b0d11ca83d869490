"""Create tasks and calendar sync tables

Revision ID: 3f1d2c9a7b10
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from alembic import op

# revision identifiers, used by Alembic.
revision = "3f1d2c9a7b10"
down_revision = None
branch_labels = None
depends_on = None

TASK_STATUS = ("PENDING", "IN_PROGRESS", "COMPLETED", "ARCHIVED")
SYNC_STATUS = (
    "IN_SYNC",
    "TASK_MODIFIED",
    "CALENDAR_MODIFIED",
    "CONFLICT",
    "SYNC_PENDING",
    "SYNC_FAILED",
)
SYNC_TYPE = ("INITIAL_SYNC", "AUTOMATIC", "MANUAL")
SYNC_DIRECTION = ("TASK_TO_CALENDAR", "CALENDAR_TO_TASK", "BIDIRECTIONAL")
RESOLUTION_STRATEGY = ("TASK_WINS", "CALENDAR_WINS", "MERGE", "MANUAL")


def upgrade() -> None:
    taskstatus = sa.Enum(*TASK_STATUS, name="taskstatus")
    syncstatus = sa.Enum(*SYNC_STATUS, name="syncstatus")
    synctype = sa.Enum(*SYNC_TYPE, name="synctype")
    syncdirection = sa.Enum(*SYNC_DIRECTION, name="syncdirection")
    conflictresolutionstrategy = sa.Enum(*RESOLUTION_STRATEGY, name="conflictresolutionstrategy")

    op.create_table(
        "tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", taskstatus, nullable=False, server_default="PENDING"),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("calendar_sync_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("calendar_synced_at", sa.DateTime(), nullable=True),
        sa.Column("calendar_link_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tasks_id", "tasks", ["id"])
    op.create_index("ix_tasks_status", "tasks", ["status"])

    op.create_table(
        "calendar_event_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("calendar_id", sa.String(length=255), nullable=False),
        sa.Column("event_title", sa.String(length=255), nullable=True),
        sa.Column("event_description", sa.Text(), nullable=True),
        sa.Column("event_start_time", sa.DateTime(), nullable=True),
        sa.Column("event_end_time", sa.DateTime(), nullable=True),
        sa.Column("task_last_modified_at", sa.DateTime(), nullable=True),
        sa.Column("calendar_last_modified_at", sa.DateTime(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("calendar_watermark_at", sa.DateTime(), nullable=True),
        sa.Column("sync_status", syncstatus, nullable=False, server_default="IN_SYNC"),
        sa.Column("conflict_detected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "conflict_resolution_strategy",
            conflictresolutionstrategy,
            nullable=False,
            server_default="TASK_WINS",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("calendar_id", "event_id", name="uq_calendar_event_links_event"),
    )
    op.create_index("ix_calendar_event_links_id", "calendar_event_links", ["id"])
    op.create_index("ix_calendar_event_links_task_id", "calendar_event_links", ["task_id"], unique=True)
    op.create_index("ix_calendar_event_links_sync_status", "calendar_event_links", ["sync_status"])
    op.create_index(
        "ix_calendar_event_links_conflict_detected", "calendar_event_links", ["conflict_detected"]
    )

    op.create_table(
        "sync_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "link_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("calendar_event_links.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sync_type", synctype, nullable=False),
        sa.Column("sync_direction", syncdirection, nullable=False),
        sa.Column("sync_status", syncstatus, nullable=False),
        sa.Column("changes_applied", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sync_history_id", "sync_history", ["id"])
    op.create_index("ix_sync_history_link_id", "sync_history", ["link_id"])
    op.create_index("ix_sync_history_task_id", "sync_history", ["task_id"])
    op.create_index("ix_sync_history_sync_status", "sync_history", ["sync_status"])
    op.create_index("ix_sync_history_synced_at", "sync_history", ["synced_at"])


def downgrade() -> None:
    op.drop_table("sync_history")
    op.drop_table("calendar_event_links")
    op.drop_table("tasks")

    bind = op.get_bind()
    for name in (
        "conflictresolutionstrategy",
        "syncdirection",
        "synctype",
        "syncstatus",
        "taskstatus",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
