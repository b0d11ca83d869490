"""Celery application and beat schedule."""
from celery import Celery
from celery.schedules import crontab

from tasksync.config import settings


def cron_schedule(expression: str) -> crontab:
    """Build a crontab from a five-field cron expression."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


celery_app = Celery(
    "tasksync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasksync.tasks.calendar_sync"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "calendar-sync-pending": {
        "task": "tasksync.tasks.calendar_sync.sync_all_pending",
        "schedule": cron_schedule(settings.SYNC_PENDING_CRON),
    },
    "calendar-check-conflicts": {
        "task": "tasksync.tasks.calendar_sync.check_all_conflicts",
        "schedule": cron_schedule(settings.CONFLICT_CHECK_CRON),
    },
    "calendar-retry-failed": {
        "task": "tasksync.tasks.calendar_sync.retry_all_failed",
        "schedule": cron_schedule(settings.RETRY_FAILED_CRON),
    },
}
