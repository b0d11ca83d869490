"""Pytest configuration and fixtures."""
import os
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

TEST_DB_PATH = Path("test_app.db")
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("CALENDAR_MODE", "stub")
os.environ.setdefault("CALENDAR_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("LOG_FORMAT", "text")

from tasksync.main import app  # noqa: E402
from tasksync.database import Base, get_db  # noqa: E402
from tasksync.crud.task import task as task_crud  # noqa: E402
from tasksync.integrations.google_calendar import (  # noqa: E402
    CalendarEvent,
    CalendarEventNotFoundError,
    CalendarUnavailableError,
    GoogleCalendarIntegration,
)
from tasksync.schemas.task import TaskCreate  # noqa: E402
from tasksync.services.calendar_sync_service import CalendarSyncService, calendar_sync_service  # noqa: E402
from tasksync.services.conflict_resolution_service import (  # noqa: E402
    ConflictResolutionService,
    conflict_resolution_service,
)


# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class FakeCalendarClient(GoogleCalendarIntegration):
    """Stub-mode calendar client with call counting and failure injection."""

    def __init__(self):
        super().__init__(mode="stub")
        self.calls = Counter()
        self.failing = set()
        self.failing_events = set()
        self.clock_skew = timedelta(0)

    def _check(self, operation: str, event_id: Optional[str] = None) -> None:
        self.calls[operation] += 1
        if operation in self.failing or (event_id is not None and event_id in self.failing_events):
            raise CalendarUnavailableError(f"{operation} unavailable")

    async def create_event(self, calendar_id, fields):
        self._check("create")
        return self._echo(calendar_id, await super().create_event(calendar_id, fields))

    async def get_event(self, calendar_id, event_id):
        self._check("get", event_id)
        return await super().get_event(calendar_id, event_id)

    async def update_event(self, calendar_id, event_id, fields):
        self._check("update", event_id)
        return self._echo(calendar_id, await super().update_event(calendar_id, event_id, fields))

    async def delete_event(self, calendar_id, event_id):
        self._check("delete", event_id)
        return await super().delete_event(calendar_id, event_id)

    def _echo(self, calendar_id: str, event: CalendarEvent) -> CalendarEvent:
        """Shift the stored last-modified time by ``clock_skew`` (the calendar's clock)."""
        key = (calendar_id, event.event_id)
        self._stub_events[key] = replace(self._stub_events[key], updated=event.updated + self.clock_skew)
        return replace(self._stub_events[key])

    def edit_remote(self, calendar_id: str, event_id: str, *, updated: datetime, **fields) -> CalendarEvent:
        """Simulate an edit made directly in the calendar at ``updated``."""
        key = (calendar_id, event_id)
        if key not in self._stub_events:
            raise CalendarEventNotFoundError(event_id)
        self._stub_events[key] = replace(self._stub_events[key], updated=updated, **fields)
        return self._stub_events[key]

    def remote(self, calendar_id: str, event_id: str) -> CalendarEvent:
        return self._stub_events[(calendar_id, event_id)]


@pytest_asyncio.fixture(scope="function")
async def db_session():
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestSessionLocal


@pytest.fixture
def fake_calendar():
    return FakeCalendarClient()


@pytest.fixture
def sync_service(fake_calendar):
    return CalendarSyncService(calendar_client=fake_calendar)


@pytest.fixture
def resolution_service(fake_calendar):
    return ConflictResolutionService(calendar_client=fake_calendar)


@pytest.fixture
def make_task(db_session: AsyncSession):
    """Factory creating committed tasks."""

    async def _make(title: str = "Prepare quarterly report", **kwargs):
        kwargs.setdefault("due_date", datetime(2026, 11, 2, 10, 0))
        return await task_crud.create(db_session, obj_in=TaskCreate(title=title, **kwargs))

    return _make


@pytest_asyncio.fixture
async def api_client(db_session: AsyncSession, fake_calendar, monkeypatch):
    """HTTP client bound to the app with the database and calendar overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(calendar_sync_service, "calendar", fake_calendar)
    monkeypatch.setattr(conflict_resolution_service, "calendar", fake_calendar)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
