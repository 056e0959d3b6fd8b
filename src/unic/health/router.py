"""Liveness, readiness and version endpoints.

Readiness covers the database, Redis and the in-process scheduler. A
scheduler disabled by configuration (ticks run in the arq worker instead)
does not degrade readiness; a stopped one does.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from unic.config import get_settings
from unic.database import get_session
from unic.redis_client import get_redis

router = APIRouter()


async def _database_status(db: AsyncSession) -> str:
    try:
        await db.scalar(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def _redis_status() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


def _scheduler_checks(scheduler: Any) -> tuple[dict[str, str], bool]:
    if scheduler is None:
        return {"scheduler": "disabled"}, True
    checks = {"scheduler": "running" if scheduler.running else "stopped"}
    if scheduler.last_tick_at is not None:
        checks["scheduler_last_tick_at"] = scheduler.last_tick_at.isoformat()
    return checks, bool(scheduler.running)


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    checks: dict[str, str] = {
        "database": await _database_status(db),
        "redis": await _redis_status(),
    }
    scheduler_checks, scheduler_ok = _scheduler_checks(getattr(request.app.state, "scheduler", None))
    checks.update(scheduler_checks)

    ready = checks["database"] == "ok" and checks["redis"] == "ok" and scheduler_ok
    return {"status": "ready" if ready else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "unic-engine",
        "version": settings.app_version,
        "environment": settings.environment,
    }
