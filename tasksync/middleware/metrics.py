"""Prometheus metrics."""
from fastapi import FastAPI
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Metrics
calendar_sync_operations_total = Counter(
    "calendar_sync_operations_total",
    "Calendar sync operations by outcome",
    ["operation", "outcome"],
)

calendar_sync_sweep_items_total = Counter(
    "calendar_sync_sweep_items_total",
    "Links processed by scheduled sweeps",
    ["sweep", "outcome"],
)


def record_sync(operation: str, outcome: str) -> None:
    calendar_sync_operations_total.labels(operation=operation, outcome=outcome).inc()


def setup_metrics(app: FastAPI) -> None:
    """Setup Prometheus metrics endpoint."""

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_sweep_item(sweep: str, outcome: str) -> None:
    calendar_sync_sweep_items_total.labels(sweep=sweep, outcome=outcome).inc()
