"""Celery tasks for scheduled calendar sync sweeps."""
import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from tasksync.config import settings
from tasksync.services.sync_sweep_service import SyncSweepService
from tasksync.tasks.celery_app import celery_app

# Create async engine for Celery tasks
engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

sweeps = SyncSweepService(session_factory=AsyncSessionLocal)


@celery_app.task(name="tasksync.tasks.calendar_sync.sync_all_pending")
def sync_all_pending():
    """Push locally modified tasks (called by Celery Beat)."""
    return asyncio.run(sweeps.sync_all_pending()).model_dump()


@celery_app.task(name="tasksync.tasks.calendar_sync.check_all_conflicts")
def check_all_conflicts():
    """Pull every linked task and flag conflicts (called by Celery Beat)."""
    return asyncio.run(sweeps.check_all_conflicts()).model_dump()


@celery_app.task(name="tasksync.tasks.calendar_sync.retry_all_failed")
def retry_all_failed():
    """Retry failed syncs (called by Celery Beat)."""
    return asyncio.run(sweeps.retry_all_failed()).model_dump()


@celery_app.task(name="tasksync.tasks.calendar_sync.full_sync")
def full_sync():
    """Push every linked task, on demand."""
    return asyncio.run(sweeps.full_sync()).model_dump()
