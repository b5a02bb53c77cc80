"""
Health Check API Routes

Provides Kubernetes-compatible health check endpoints for the application.

Endpoints:
- /health/live: Liveness probe - is the application running?
- /health/ready: Readiness probe - can the database be reached?
- /health/status: Scheduler, rate limiter, search queue and RSS state
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from acquirarr.config import Config
from acquirarr.database import get_db
from acquirarr.schemas.responses import StatusResponse
from acquirarr.services.background import get_task_supervisor
from acquirarr.services.rate_limiter import get_rate_limiter, get_search_queue
from acquirarr.services.rss_sync import get_rss_sync_service
from acquirarr.workers.scheduler import get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness_probe():
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running. Does not check dependencies.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness_probe(db: Session = Depends(get_db)):
    """
    Kubernetes readiness probe.

    Returns:
        200: database reachable
        503: database not reachable
    """
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {type(e).__name__}: {e}")
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": str(e)})
    return {"status": "ready", "database": "connected"}


@router.get("/status", response_model=StatusResponse)
async def engine_status():
    supervisor = get_task_supervisor()
    return {
        "version": Config.APP_VERSION,
        "scheduler": get_scheduler().get_status(),
        "rate_limiter": get_rate_limiter().get_status(),
        "search_queue": get_search_queue().get_status(),
        "rss": get_rss_sync_service().get_status(),
        "background": {"pending": supervisor.pending, "recent_failures": supervisor.recent_failures()},
    }
