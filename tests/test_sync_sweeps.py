"""Tests for scheduled sync sweeps."""
from datetime import timedelta

import pytest

from tasksync.config import settings
from tasksync.core.exceptions import RemoteUnavailableError
from tasksync.crud.calendar_sync import calendar_event_link
from tasksync.crud.task import task as task_crud
from tasksync.models.calendar_sync import SyncStatus
from tasksync.services.sync_sweep_service import SyncSweepService
from tasksync.tasks.celery_app import celery_app, cron_schedule


@pytest.fixture
def sweeps(session_factory, sync_service):
    return SyncSweepService(session_factory=session_factory, sync_service=sync_service)


async def _link_status(session_factory, task_id):
    async with session_factory() as db:
        link = await calendar_event_link.get_by_task(db, task_id=task_id)
        return link.sync_status, link.conflict_detected


@pytest.mark.asyncio
async def test_sync_all_pending_continues_past_failures(
    db_session, make_task, sync_service, sweeps, session_factory, fake_calendar
):
    healthy = await make_task(title="Healthy")
    broken = await make_task(title="Broken")
    await sync_service.enable_sync(db_session, task_id=healthy.id)
    broken_event = await sync_service.enable_sync(db_session, task_id=broken.id)
    await sync_service.mark_task_modified(db_session, task_id=healthy.id)
    await sync_service.mark_task_modified(db_session, task_id=broken.id)
    fake_calendar.failing_events.add(broken_event.event_id)

    result = await sweeps.sync_all_pending()

    assert result.total == 2
    assert result.succeeded == 1
    assert result.failed == 1
    assert (await _link_status(session_factory, healthy.id))[0] == SyncStatus.IN_SYNC
    assert (await _link_status(session_factory, broken.id))[0] == SyncStatus.SYNC_FAILED

    fake_calendar.failing_events.clear()
    retried = await sweeps.retry_all_failed()

    assert retried.total == 1
    assert retried.succeeded == 1
    assert (await _link_status(session_factory, broken.id))[0] == SyncStatus.IN_SYNC


@pytest.mark.asyncio
async def test_sync_all_pending_skipped_when_auto_sync_disabled(sweeps, monkeypatch):
    monkeypatch.setattr(settings, "CALENDAR_AUTO_SYNC_ENABLED", False)

    result = await sweeps.sync_all_pending()

    assert result.skipped is True
    assert result.total == 0


@pytest.mark.asyncio
async def test_conflicted_links_wait_for_resolution(
    db_session, make_task, sync_service, sweeps, session_factory, fake_calendar
):
    task_obj = await make_task()
    enabled = await sync_service.enable_sync(db_session, task_id=task_obj.id)
    link = await calendar_event_link.get_by_task(db_session, task_id=task_obj.id)
    watermark = link.last_synced_at

    task_obj = await task_crud.update(db_session, db_obj=task_obj, obj_in={"title": "Local title"})
    task_obj.updated_at = watermark + timedelta(minutes=1)
    db_session.add(task_obj)
    await db_session.commit()
    fake_calendar.edit_remote(
        enabled.calendar_id,
        enabled.event_id,
        updated=watermark + timedelta(minutes=2),
        title="Remote title",
    )
    await sync_service.sync_calendar_to_task(db_session, task_id=task_obj.id)

    checked = await sweeps.check_all_conflicts()
    assert checked.total == 1
    assert checked.succeeded == 1
    assert await _link_status(session_factory, task_obj.id) == (SyncStatus.CONFLICT, True)
    async with session_factory() as db:
        assert (await task_crud.get(db, id=task_obj.id)).title == "Local title"

    async with session_factory() as db:
        stored = await calendar_event_link.get_by_task(db, task_id=task_obj.id)
        stored.sync_status = SyncStatus.SYNC_FAILED
        db.add(stored)
        await db.commit()

    assert (await sweeps.retry_all_failed()).total == 0
    assert (await sweeps.full_sync()).total == 0
    assert fake_calendar.remote(enabled.calendar_id, enabled.event_id).title == "Remote title"


@pytest.mark.asyncio
async def test_check_all_conflicts_clears_conflict_once_sides_agree(
    db_session, make_task, sync_service, sweeps, session_factory, fake_calendar
):
    task_obj = await make_task()
    enabled = await sync_service.enable_sync(db_session, task_id=task_obj.id)
    link = await calendar_event_link.get_by_task(db_session, task_id=task_obj.id)
    watermark = link.last_synced_at

    task_obj = await task_crud.update(db_session, db_obj=task_obj, obj_in={"title": "Local title"})
    task_obj.updated_at = watermark + timedelta(minutes=1)
    db_session.add(task_obj)
    await db_session.commit()
    fake_calendar.edit_remote(
        enabled.calendar_id,
        enabled.event_id,
        updated=watermark + timedelta(minutes=2),
        title="Remote title",
    )
    await sync_service.sync_calendar_to_task(db_session, task_id=task_obj.id)
    fake_calendar.edit_remote(
        enabled.calendar_id,
        enabled.event_id,
        updated=watermark + timedelta(minutes=3),
        title="Local title",
    )

    checked = await sweeps.check_all_conflicts()

    assert checked.succeeded == 1
    assert await _link_status(session_factory, task_obj.id) == (SyncStatus.IN_SYNC, False)


@pytest.mark.asyncio
async def test_check_all_conflicts_keeps_conflict_when_calendar_unreachable(
    db_session, make_task, sync_service, sweeps, session_factory, fake_calendar
):
    task_obj = await make_task()
    enabled = await sync_service.enable_sync(db_session, task_id=task_obj.id)
    link = await calendar_event_link.get_by_task(db_session, task_id=task_obj.id)
    watermark = link.last_synced_at

    task_obj = await task_crud.update(db_session, db_obj=task_obj, obj_in={"title": "Local title"})
    task_obj.updated_at = watermark + timedelta(minutes=1)
    db_session.add(task_obj)
    await db_session.commit()
    fake_calendar.edit_remote(
        enabled.calendar_id,
        enabled.event_id,
        updated=watermark + timedelta(minutes=2),
        title="Remote title",
    )
    await sync_service.sync_calendar_to_task(db_session, task_id=task_obj.id)
    fake_calendar.failing.add("get")

    checked = await sweeps.check_all_conflicts()

    assert checked.failed == 1
    assert await _link_status(session_factory, task_obj.id) == (SyncStatus.CONFLICT, True)


@pytest.mark.asyncio
async def test_full_sync_pushes_every_linked_task(db_session, make_task, sync_service, sweeps, fake_calendar):
    first = await make_task(title="First")
    second = await make_task(title="Second")
    await sync_service.enable_sync(db_session, task_id=first.id)
    await sync_service.enable_sync(db_session, task_id=second.id)
    updates_before = fake_calendar.calls["update"]

    result = await sweeps.full_sync()

    assert result.sweep == "full_sync"
    assert result.total == 2
    assert result.succeeded == 2
    assert fake_calendar.calls["update"] == updates_before + 2


@pytest.mark.asyncio
async def test_sync_statistics(db_session, make_task, sync_service, sweeps, fake_calendar):
    first = await make_task(title="First")
    second = await make_task(title="Second")
    await sync_service.enable_sync(db_session, task_id=first.id)
    await sync_service.enable_sync(db_session, task_id=second.id)
    fake_calendar.failing.add("update")
    with pytest.raises(RemoteUnavailableError):
        await sync_service.sync_task_to_calendar(db_session, task_id=second.id)

    stats = await sweeps.get_sync_statistics(db_session)

    assert stats.total_links == 2
    assert stats.in_sync_count == 1
    assert stats.failed_count == 1
    assert stats.failed_attempts == 1
    assert stats.success_rate == 50.0


def test_beat_schedule_uses_configured_crons():
    schedule = celery_app.conf.beat_schedule

    assert set(schedule) == {"calendar-sync-pending", "calendar-check-conflicts", "calendar-retry-failed"}
    assert schedule["calendar-sync-pending"]["task"] == "tasksync.tasks.calendar_sync.sync_all_pending"


def test_cron_schedule_rejects_malformed_expression():
    with pytest.raises(ValueError):
        cron_schedule("*/5 * *")
