# aeo_api/routes/health.py
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from aeo_api.core.config import settings
from aeo_api.core.logging import get_structlog_logger
from aeo_api.services.redis import health_check as redis_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_started_at = time.time()


@router.get("/live")
async def liveness() -> Dict[str, Any]:
    """Process is up."""
    return {
        "status": "alive",
        "environment": settings.environment,
        "uptime": round(time.time() - _started_at, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness() -> JSONResponse:
    """Storage backend reachable; email and CRM providers reported as configured."""
    checks: Dict[str, Dict[str, Any]] = {}

    if settings.store_backend == "redis":
        checks["redis"] = await redis_health_check()
    else:
        checks["store"] = {"status": "healthy", "backend": "memory"}

    checks["email"] = {"status": "configured", "provider": settings.email_provider}
    checks["crm"] = {"status": "enabled" if settings.hubspot_enabled else "disabled"}

    ready = all(check.get("status") != "unhealthy" for check in checks.values())
    if not ready:
        logger.warning("health.not_ready", checks=checks)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
