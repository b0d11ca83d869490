"""Google Calendar integration module."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx
from dateutil import parser as date_parser
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from tasksync.config import settings
from tasksync.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

EVENT_CONFIRMED = "confirmed"
EVENT_CANCELLED = "cancelled"


class CalendarMode(str, Enum):
    """Calendar integration mode."""

    STUB = "stub"
    LIVE = "live"


class CalendarUnavailableError(Exception):
    """Transient failure talking to the calendar provider."""


class CalendarEventNotFoundError(Exception):
    """The requested event does not exist (or was deleted) remotely."""


class _ServerError(Exception):
    """5xx answer, retried like a transport error."""


@dataclass
class CalendarEvent:
    """Remote event as seen by the sync core."""

    event_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: str = EVENT_CONFIRMED
    updated: Optional[datetime] = None


def _format_datetime(value: datetime) -> str:
    return to_naive_utc(value).replace(tzinfo=timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return to_naive_utc(date_parser.isoparse(value))


class GoogleCalendarIntegration:
    """Calendar client with stub (in-memory) and live (REST) modes."""

    def __init__(
        self,
        *,
        mode: Optional[str] = None,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.mode = CalendarMode((mode or settings.CALENDAR_MODE).lower())
        self.base_url = (base_url or settings.CALENDAR_API_BASE_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.CALENDAR_ACCESS_TOKEN
        self.timeout = timeout if timeout is not None else settings.CALENDAR_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.CALENDAR_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.CALENDAR_RETRY_DELAY_SECONDS
        self._stub_events: Dict[Tuple[str, str], CalendarEvent] = {}

    # Payload mapping

    @staticmethod
    def _prepare_event_body(fields: Dict[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "summary": fields.get("title"),
            "description": fields.get("description"),
        }
        if fields.get("start"):
            body["start"] = {"dateTime": _format_datetime(fields["start"]), "timeZone": "UTC"}
        if fields.get("end"):
            body["end"] = {"dateTime": _format_datetime(fields["end"]), "timeZone": "UTC"}
        if fields.get("status"):
            body["status"] = fields["status"]
        return body

    @staticmethod
    def _parse_event(data: Dict[str, Any]) -> CalendarEvent:
        start = data.get("start") or {}
        end = data.get("end") or {}
        return CalendarEvent(
            event_id=str(data.get("id", "")),
            title=data.get("summary"),
            description=data.get("description"),
            start=_parse_datetime(start.get("dateTime") or start.get("date")),
            end=_parse_datetime(end.get("dateTime") or end.get("date")),
            status=data.get("status") or EVENT_CONFIRMED,
            updated=_parse_datetime(data.get("updated")),
        )

    # Public API

    async def create_event(self, calendar_id: str, fields: Dict[str, Any]) -> CalendarEvent:
        """Create an event from ``title``/``description``/``start``/``end``/``status``."""
        if self.mode == CalendarMode.STUB:
            event = CalendarEvent(
                event_id=f"stub_event_{uuid.uuid4().hex}",
                title=fields.get("title"),
                description=fields.get("description"),
                start=to_naive_utc(fields.get("start")),
                end=to_naive_utc(fields.get("end")),
                status=fields.get("status") or EVENT_CONFIRMED,
                updated=utcnow(),
            )
            self._stub_events[(calendar_id, event.event_id)] = event
            return replace(event)

        data = await self._request("POST", self._events_path(calendar_id), json=self._prepare_event_body(fields))
        return self._parse_event(data)

    async def get_event(self, calendar_id: str, event_id: str) -> CalendarEvent:
        if self.mode == CalendarMode.STUB:
            event = self._stub_events.get((calendar_id, event_id))
            if event is None:
                raise CalendarEventNotFoundError(f"Event {event_id} not found in calendar {calendar_id}")
            return replace(event)

        data = await self._request("GET", self._events_path(calendar_id, event_id))
        return self._parse_event(data)

    async def update_event(self, calendar_id: str, event_id: str, fields: Dict[str, Any]) -> CalendarEvent:
        """Replace the tracked fields of an event and return the stored version."""
        if self.mode == CalendarMode.STUB:
            current = self._stub_events.get((calendar_id, event_id))
            if current is None:
                raise CalendarEventNotFoundError(f"Event {event_id} not found in calendar {calendar_id}")
            updated = replace(
                current,
                title=fields.get("title"),
                description=fields.get("description"),
                start=to_naive_utc(fields.get("start")),
                end=to_naive_utc(fields.get("end")),
                status=fields.get("status") or current.status,
                updated=utcnow(),
            )
            self._stub_events[(calendar_id, event_id)] = updated
            return replace(updated)

        data = await self._request(
            "PUT",
            self._events_path(calendar_id, event_id),
            json=self._prepare_event_body(fields),
        )
        return self._parse_event(data)

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event. Returns False when it did not exist."""
        if self.mode == CalendarMode.STUB:
            return self._stub_events.pop((calendar_id, event_id), None) is not None

        try:
            await self._request("DELETE", self._events_path(calendar_id, event_id))
        except CalendarEventNotFoundError:
            return False
        return True

    # Live transport

    @staticmethod
    def _events_path(calendar_id: str, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
                reraise=True,
            ):
                with attempt:
                    return await self._send(method, url, json)
        except (httpx.HTTPError, _ServerError) as exc:
            logger.warning(f"Calendar API {method} {url} failed: {exc}")
            raise CalendarUnavailableError(str(exc) or exc.__class__.__name__) from exc

    async def _send(self, method: str, url: str, json: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, json=json, headers=self._build_headers())

        if response.status_code in (404, 410):
            raise CalendarEventNotFoundError(f"{method} {url} returned {response.status_code}")
        if response.status_code >= 500:
            raise _ServerError(f"{method} {url} returned {response.status_code}")
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()


# Global instance
google_calendar = GoogleCalendarIntegration()
