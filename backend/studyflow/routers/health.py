"""
Health Check Endpoints

Endpoints:
- GET /api/health - Liveness
- GET /api/health/detailed - PostgreSQL, Redis, event relay and offline queue
- GET /api/health/ready - Readiness check (PostgreSQL and Redis answer)

Redis being down degrades the service rather than breaking it: session ends
are then written directly, and only the offline queue, the discard fence
and the cross-instance relay are unavailable.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.config import settings
from studyflow.db.base import get_db
from studyflow.db.redis import get_redis
from studyflow.services.learning.offline_queue import FocusSessionQueue

router = APIRouter(prefix="/api/health", tags=["health"])


async def _check_postgres(db: AsyncSession) -> dict:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


async def _check_redis() -> dict:
    try:
        r = await get_redis()
        await r.ping()
        pending = await FocusSessionQueue(get_redis).size()
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "queued_session_ends": pending}


def _relay_status(request: Request) -> dict:
    if not settings.EVENT_RELAY_ENABLED:
        return {"status": "disabled"}
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        return {"status": "unavailable"}
    return {"status": "running", "channel": relay.channel}


@router.get("")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": settings.APP_NAME}


@router.get("/detailed")
async def detailed_health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Dependency status; any unhealthy store marks the service degraded."""
    dependencies = {
        "postgres": await _check_postgres(db),
        "redis": await _check_redis(),
        "event_relay": _relay_status(request),
    }
    degraded = any(d["status"] == "unhealthy" for d in dependencies.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "service": settings.APP_NAME,
        "dependencies": dependencies,
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Returns ready only if PostgreSQL and Redis both answer."""
    checks = {"postgres": await _check_postgres(db), "redis": await _check_redis()}
    failed = {name: c["error"] for name, c in checks.items() if c["status"] != "healthy"}
    if failed:
        return {"ready": False, "errors": failed}
    return {"ready": True}
