"""
Health check service.

Checks registry database connectivity and, when configured, the optional
enrichment service. Returns structured health responses with per-component
status.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import async_session_maker
from services.enrichment import SystemInfoEnricher

logger = logging.getLogger(__name__)

# Captured at module load, used to compute uptime
_start_time = time.monotonic()


class ComponentHealth(BaseModel):
    name: str
    status: str  # "ok" | "degraded" | "error"
    message: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    app: str
    version: str
    uptime_seconds: float
    checks: list[ComponentHealth]
    timestamp: str


async def check_database() -> ComponentHealth:
    """Check database connectivity by running SELECT 1."""
    start = time.perf_counter()
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            name="database",
            status="error",
            message=str(e),
            response_time_ms=round((time.perf_counter() - start) * 1000, 1),
        )
    return ComponentHealth(
        name="database",
        status="ok",
        response_time_ms=round((time.perf_counter() - start) * 1000, 1),
    )


async def check_enrichment(enricher: Optional[SystemInfoEnricher] = None) -> ComponentHealth:
    """Enrichment is optional: not configured is ok, configured but silent is degraded."""
    enricher = enricher or SystemInfoEnricher()
    if not enricher.is_configured:
        return ComponentHealth(name="enrichment", status="ok", message="not configured")

    start = time.perf_counter()
    reachable = await enricher.check()
    elapsed = round((time.perf_counter() - start) * 1000, 1)
    if not reachable:
        return ComponentHealth(
            name="enrichment",
            status="degraded",
            message=f"{enricher.base_url} not reachable, discovery uses direct parsing",
            response_time_ms=elapsed,
        )
    return ComponentHealth(name="enrichment", status="ok", response_time_ms=elapsed)


async def run_health_checks(enricher: Optional[SystemInfoEnricher] = None) -> HealthResponse:
    """Run all health checks and return aggregated status."""
    checks = [
        await check_database(),
        await check_enrichment(enricher),
    ]

    # Without the registry nothing works; everything else only degrades
    if any(c.status == "error" and c.name == "database" for c in checks):
        overall = "unhealthy"
    elif any(c.status != "ok" for c in checks):
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
