"""Health check and metrics routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from bluegreen.api.dependencies.services import get_service_container, ServiceContainer


router = APIRouter(tags=["health"])

Container = Annotated[ServiceContainer, Depends(get_service_container)]


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/health/ready")
async def readiness_check(container: Container) -> dict[str, Any]:
    """Readiness check - verifies the store and lock backends answer."""
    checks: dict[str, str] = {}

    database = container.database
    if database is not None:
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"
    else:
        checks["database"] = "in-memory"

    try:
        await container.lock_service.is_locked("readiness-probe")
        checks["lock"] = "ok"
    except Exception as e:
        checks["lock"] = f"error: {e}"

    all_ok = all(not v.startswith("error") for v in checks.values())
    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        "sweeper": container.sweeper.get_health(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - verifies the service is running."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics(container: Container) -> Response:
    """Prometheus exposition of the controller metrics."""
    if not container.settings.observability.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics are disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
