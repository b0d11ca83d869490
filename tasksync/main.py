"""FastAPI application entry point."""
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI
from sqlalchemy import select

from tasksync.api.v1 import calendar_sync, tasks
from tasksync.config import settings
from tasksync.core.logging import configure_logging
from tasksync.database import close_db, engine, init_db
from tasksync.middleware.metrics import setup_metrics


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    configure_logging()
    await init_db()
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)
setup_metrics(app)

# Include routers
app.include_router(tasks.router, prefix=f"{settings.API_V1_PREFIX}/tasks", tags=["tasks"])
app.include_router(
    calendar_sync.router,
    prefix=f"{settings.API_V1_PREFIX}/calendar",
    tags=["calendar"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    health_status = {
        "status": "ok",
        "checks": {
            "database": "unknown",
            "redis": "unknown",
            "calendar_mode": settings.CALENDAR_MODE,
        },
    }

    # Check database
    try:
        async with engine.begin() as conn:
            await conn.execute(select(1))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    # Check Redis (Celery broker)
    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        r.ping()
        health_status["checks"]["redis"] = "ok"
    except Exception as e:
        health_status["checks"]["redis"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    return health_status
