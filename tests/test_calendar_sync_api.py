"""Integration tests for the task and calendar sync API endpoints."""
from uuid import uuid4

import pytest


async def _create_task(api_client, **fields):
    payload = {"title": "Plan sprint", "due_date": "2026-11-02T12:00:00+02:00", **fields}
    response = await api_client.post("/api/v1/tasks", json=payload)
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_task_crud_endpoints(api_client):
    created = await _create_task(api_client, description="Backlog grooming")

    assert created["due_date"] == "2026-11-02T10:00:00"
    assert created["calendar_sync_enabled"] is False

    response = await api_client.get(f"/api/v1/tasks/{created['id']}")
    assert response.status_code == 200
    assert response.json()["description"] == "Backlog grooming"

    response = await api_client.patch(f"/api/v1/tasks/{created['id']}", json={"status": "IN_PROGRESS"})
    assert response.status_code == 200
    assert response.json()["status"] == "IN_PROGRESS"

    response = await api_client.get("/api/v1/tasks")
    assert [item["id"] for item in response.json()] == [created["id"]]

    response = await api_client.delete(f"/api/v1/tasks/{created['id']}")
    assert response.status_code == 204
    response = await api_client.get(f"/api/v1/tasks/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_enable_edit_and_push_flow(api_client, fake_calendar):
    created = await _create_task(api_client)
    task_id = created["id"]

    response = await api_client.post("/api/v1/calendar/enable", json={"task_id": task_id})
    assert response.status_code == 200
    event_id = response.json()["event_id"]

    response = await api_client.post("/api/v1/calendar/enable", json={"task_id": task_id})
    assert response.status_code == 409
    assert fake_calendar.calls["create"] == 1

    response = await api_client.patch(f"/api/v1/tasks/{task_id}", json={"title": "Plan sprint 42"})
    assert response.status_code == 200

    response = await api_client.get(f"/api/v1/calendar/status/{task_id}")
    assert response.json()["sync_status"] == "SYNC_PENDING"

    response = await api_client.post(f"/api/v1/calendar/sync-to-calendar/{task_id}")
    assert response.status_code == 200
    assert response.json()["sync_status"] == "IN_SYNC"
    assert fake_calendar.remote("primary", event_id).title == "Plan sprint 42"

    response = await api_client.post(f"/api/v1/calendar/sync-from-calendar/{task_id}")
    assert response.status_code == 200
    assert response.json()["conflict_detected"] is False

    response = await api_client.get(f"/api/v1/calendar/history/{task_id}")
    assert response.status_code == 200
    assert len(response.json()) == 3

    response = await api_client.get(f"/api/v1/calendar/analyze-conflict/{task_id}")
    assert response.status_code == 200
    assert response.json()["differing_fields"] == []

    response = await api_client.post(
        "/api/v1/calendar/resolve-conflict",
        json={"task_id": task_id, "strategy": "TASK_WINS"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "No conflict detected for this task"

    response = await api_client.get("/api/v1/calendar/statistics")
    assert response.status_code == 200
    assert response.json()["total_links"] == 1
    assert response.json()["success_rate"] == 100.0

    response = await api_client.post(
        "/api/v1/calendar/disable",
        json={"task_id": task_id, "delete_calendar_event": True},
    )
    assert response.status_code == 200
    assert response.json()["calendar_event_deleted"] is True

    response = await api_client.get(f"/api/v1/calendar/status/{task_id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_push_failure_returns_service_unavailable(api_client, fake_calendar):
    created = await _create_task(api_client)
    await api_client.post("/api/v1/calendar/enable", json={"task_id": created["id"]})
    fake_calendar.failing.add("update")

    response = await api_client.post(f"/api/v1/calendar/sync-to-calendar/{created['id']}")

    assert response.status_code == 503
    response = await api_client.get(f"/api/v1/calendar/status/{created['id']}")
    assert response.json()["sync_status"] == "SYNC_FAILED"


@pytest.mark.asyncio
async def test_bulk_sync_endpoint(api_client):
    created = await _create_task(api_client)
    await api_client.post("/api/v1/calendar/enable", json={"task_id": created["id"]})

    response = await api_client.post(
        "/api/v1/calendar/bulk-sync",
        json={"task_ids": [str(uuid4()), created["id"]], "direction": "CALENDAR_TO_TASK"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_tasks"] == 2
    assert body["succeeded"] == 1
    assert body["failed"] == 1

    response = await api_client.post("/api/v1/calendar/bulk-sync", json={"task_ids": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_task_returns_not_found(api_client):
    response = await api_client.post("/api/v1/calendar/enable", json={"task_id": str(uuid4())})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health_and_metrics(api_client, db_session):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "ok"

    response = await api_client.get("/metrics")
    assert response.status_code == 200
    assert "calendar_sync_operations_total" in response.text
