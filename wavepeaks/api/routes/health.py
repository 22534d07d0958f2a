from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
import asyncio
import os
import platform
import sys
import time

from wavepeaks.core.config import settings
from wavepeaks.core.logging import logger
from wavepeaks.api.deps import get_store
from wavepeaks.services.cache import ResultStore
from wavepeaks.services.conversion.models import utcnow

router = APIRouter()

SERVICE = "wavepeaks"
VERSION = "0.1.0"

_STARTED = time.monotonic()


def _uptime() -> float:
    return round(time.monotonic() - _STARTED, 3)


async def _timed_ping(store: ResultStore) -> tuple[bool, float]:
    t0 = time.perf_counter()
    ok = await asyncio.to_thread(store.ping)
    return ok, round((time.perf_counter() - t0) * 1000.0, 2)


@router.get("/health")
async def health(store: ResultStore = Depends(get_store)):
    body = {
        "timestamp": utcnow().isoformat(),
        "status": "healthy",
        "service": SERVICE,
        "version": VERSION,
        "uptime": _uptime(),
        "environment": settings.APP_ENV,
        "checks": {"server": "healthy", "database": "unknown", "converter": "unknown"},
    }
    try:
        db_ok = await asyncio.to_thread(store.ping)
    except Exception as e:
        logger.exception(f"[health] check failed: {e}")
        body["status"] = "unhealthy"
        body["error"] = str(e)
        return JSONResponse(body, status_code=503)

    body["checks"]["database"] = "healthy" if db_ok else "unhealthy"
    body["checks"]["converter"] = "configured" if settings.CONVERTER_API_KEY else "not_configured"
    if not db_ok or not settings.CONVERTER_API_KEY:
        body["status"] = "degraded"
    return body


@router.get("/health/detailed")
async def health_detailed(store: ResultStore = Depends(get_store)):
    checked_at = utcnow().isoformat()
    body = {
        "timestamp": checked_at,
        "service": SERVICE,
        "version": VERSION,
        "status": "healthy",
        "dependencies": {
            "database": {"status": "unknown", "responseTime": None, "lastChecked": checked_at},
            "converter": {
                "status": "configured" if settings.CONVERTER_API_KEY else "not_configured",
                "configured": bool(settings.CONVERTER_API_KEY),
                "lastChecked": checked_at,
            },
        },
        "system": {
            "uptime": _uptime(),
            "pid": os.getpid(),
            "platform": sys.platform,
            "pythonVersion": platform.python_version(),
            "environment": settings.APP_ENV,
        },
    }
    try:
        db_ok, elapsed_ms = await _timed_ping(store)
    except Exception as e:
        logger.exception(f"[health] detailed check failed: {e}")
        body["status"] = "unhealthy"
        body["error"] = str(e)
        return JSONResponse(body, status_code=503)

    body["dependencies"]["database"].update(
        status="healthy" if db_ok else "unhealthy",
        responseTime=elapsed_ms,
        lastChecked=utcnow().isoformat(),
    )
    if not db_ok or not settings.CONVERTER_API_KEY:
        body["status"] = "degraded"
    return body
