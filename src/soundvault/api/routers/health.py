"""Health check endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text

from soundvault.api.dependencies import get_services
from soundvault.infrastructure.lifecycle import AppServices

router = APIRouter(prefix="/health")


class LivenessStatus(BaseModel):
    """Simple liveness probe response."""

    status: str = Field(description="alive")
    timestamp: str = Field(description="ISO timestamp")


class HealthStatus(BaseModel):
    """Component status overview."""

    status: str = Field(description="healthy or degraded")
    timestamp: str = Field(description="ISO timestamp of health check")
    checks: dict[str, Any] = Field(default_factory=dict)


@router.get("/live")
async def liveness_probe() -> LivenessStatus:
    return LivenessStatus(status="alive", timestamp=datetime.now(UTC).isoformat())


@router.get("")
async def health_check(services: AppServices = Depends(get_services)) -> HealthStatus:
    """Database, worker pool, watcher and background worker status."""
    database_ok = True
    try:
        async with services.database.session_scope() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        database_ok = False

    checks: dict[str, Any] = {
        "database": database_ok,
        "worker_pool": services.worker_pool.get_stats(),
        "watcher": services.watcher.get_stats(),
        "sync_queue_worker": services.sync_queue_worker.get_stats(),
        "auto_sync_worker": services.auto_sync_worker.get_stats(),
        "events": services.notifier.get_stats(),
    }
    return HealthStatus(
        status="healthy" if database_ok else "degraded",
        timestamp=datetime.now(UTC).isoformat(),
        checks=checks,
    )
