"""
FastAPI Main Application for Acquirarr

This module defines the application entry point with:
- API route registration
- CORS middleware
- Request logging with X-Request-ID correlation
- Lifespan context manager starting and stopping the scheduler

Entry Point:
    Run with: uvicorn acquirarr.main:app --app-dir backend
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from acquirarr.api import automation_routes, download_routes, grab_routes, health_routes, search_routes
from acquirarr.config import Config
from acquirarr.database import init_db
from acquirarr.services.background import get_task_supervisor
from acquirarr.services.structured_logging import clear_context, generate_request_id, set_request_id, setup_json_logging
from acquirarr.workers.scheduler import start_scheduler, stop_scheduler

root_logger = logging.getLogger()
log_level = getattr(logging, Config.LOG_LEVEL, logging.INFO)
if Config.LOG_JSON or not root_logger.handlers:
    setup_json_logging(logger_name=None, level=log_level, json_output=Config.LOG_JSON)
    root_logger.setLevel(log_level)

# Silence per-request client logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request and response with a correlation id.

    The id comes from the X-Request-ID header or is generated, is set in the
    logging context for the duration of the request and is echoed back in
    the response headers.
    """

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/health/live"):
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"[{request_id}] {request.method} {request.url.path} from {client_ip}")

        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id
            logger.info(f"   [{request_id}] {response.status_code} ({process_time:.2f}ms)")
            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"   [{request_id}] Request failed after {process_time:.2f}ms: "
                f"{type(e).__name__}: {e}"
            )
            raise
        finally:
            clear_context()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        1. Validate configuration
        2. Create all database tables
        3. Start the scheduler (download sync, RSS, missing and cutoff searches)

    Shutdown:
        1. Stop the scheduler
        2. Cancel outstanding background tasks
    """
    # ========== STARTUP ==========
    logger.info("=" * 60)
    logger.info(f"Starting {Config.APP_TITLE} {Config.APP_VERSION}")
    logger.info("=" * 60)

    if not Config.validate():
        logger.warning("Configuration validation failed, check environment variables")
    logger.info(f"Configuration: {Config.get_summary()}")

    logger.info("Creating database tables...")
    init_db()
    logger.info("Database tables created/verified")

    try:
        await start_scheduler()
    except Exception as e:
        logger.warning(f"Scheduler failed to start: {e}")

    logger.info("Application startup complete")

    yield

    # ========== SHUTDOWN ==========
    logger.info(f"Shutting down {Config.APP_TITLE}")
    try:
        await stop_scheduler()
    except Exception as e:
        logger.warning(f"Scheduler shutdown error: {e}")
    await get_task_supervisor().cancel_all()
    logger.info("Shutdown complete")


tags_metadata = [
    {"name": "health", "description": "Liveness, readiness and engine status."},
    {"name": "search", "description": "Interactive searches across the configured indexers."},
    {"name": "grab", "description": "Send a chosen release to a download client."},
    {"name": "downloads", "description": "Download queue, cancellation and sync."},
    {"name": "automation", "description": "Manual triggers for RSS sync and automatic searches."},
]

app = FastAPI(
    title=Config.APP_TITLE,
    description=Config.APP_DESCRIPTION,
    version=Config.APP_VERSION,
    lifespan=lifespan,
    openapi_tags=tags_metadata,
)

app.add_middleware(RequestLoggingMiddleware)

cors_origins = ["*"] if Config.DEBUG else Config.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_routes.router)
app.include_router(search_routes.router)
app.include_router(grab_routes.router)
app.include_router(download_routes.router)
app.include_router(automation_routes.router)


def run():
    """Console entry point."""
    import uvicorn
    uvicorn.run(app, host=Config.APP_HOST, port=Config.APP_PORT)


if __name__ == "__main__":
    run()
