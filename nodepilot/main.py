"""
NodePilot - Main FastAPI Application
====================================

The API server: machine CRUD, schedule management, manual start/stop and
node status, plus the scheduler running inside the same event loop.

Startup order:
1. validate configuration and set up logging/alerting
2. initialize the database
3. seed the status cache from persisted rows (stale but available)
4. start the scheduler (minute tick and interval status refresh)

Run with:
    uvicorn nodepilot.main:app
    python -m nodepilot.main
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .config import get_settings, validate_configuration
from .database import init_database, close_database, db_manager
from .api.router import api_router
from .dependencies import RequestLogger
from .scheduler.config import get_scheduler_settings
from .scheduler.scheduler import get_scheduler
from .services.status_cache import get_status_cache
from .utils.logging import setup_logging, setup_error_alerting, shutdown_error_alerting
from .utils.helpers import get_app_info


# =============================================================================
# CONFIGURATION AND GLOBALS
# =============================================================================

settings = get_settings()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the database, status cache and scheduler; stop them on shutdown."""
    setup_logging()
    alert_listener = setup_error_alerting()

    logger.info("Starting NodePilot...")

    config_errors = validate_configuration()
    if config_errors:
        logger.error("Configuration validation failed:")
        for error in config_errors:
            logger.error(f"  - {error}")
        shutdown_error_alerting(alert_listener)
        raise RuntimeError("Invalid configuration")

    scheduler = None
    try:
        init_database()

        status_cache = get_status_cache()
        status_cache.load_persisted()

        scheduler = get_scheduler()
        if get_scheduler_settings().enabled:
            scheduler.start()
        else:
            logger.info("Scheduler disabled by configuration; schedules will not fire")

        logger.info("NodePilot started successfully")

        yield

    finally:
        logger.info("Shutting down NodePilot...")

        if scheduler is not None:
            await scheduler.stop()

        close_database()

        logger.info("NodePilot shutdown complete")
        shutdown_error_alerting(alert_listener)


# =============================================================================
# FASTAPI APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title="NodePilot",
    description="Schedule-driven start/stop control for a fleet of compute nodes",
    version=settings.app_version,
    docs_url=settings.docs_url if settings.enable_docs else None,
    redoc_url=settings.redoc_url if settings.enable_docs else None,
    lifespan=lifespan
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials="*" not in settings.cors_origin_list,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_logger = RequestLogger(request)
    request_logger.log_request_start()
    response = await call_next(request)
    request_logger.log_request_end(status_code=response.status_code)
    return response


# =============================================================================
# API ROUTES
# =============================================================================

app.include_router(api_router, prefix="/api/v1")


# =============================================================================
# ROOT ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """Basic information about the service."""
    app_info = get_app_info()

    return {
        "message": "Welcome to NodePilot",
        "description": "Schedule-driven start/stop control for a fleet of compute nodes",
        "version": app_info["version"],
        "status": "running",
        "docs_url": settings.docs_url if settings.enable_docs else None,
        "api_base": "/api/v1",
        "features": [
            "Machine registry with start/stop endpoints",
            "Daily and date-range schedules",
            "Manual start/stop with retry",
            "Cached node status with API health tracking"
        ]
    }


@app.get("/health")
async def health_check():
    """Quick health summary. See /api/v1/health/detailed for all components."""
    status_cache = get_status_cache()
    db_health = db_manager.health_check()
    api_health = status_cache.health

    status = "healthy"
    if db_health["status"] != "healthy":
        status = "unhealthy"
    elif not api_health.is_working:
        status = "degraded"

    content = {
        "status": status,
        "timestamp": get_app_info()["timestamp"],
        "components": {
            "database": db_health,
            "status_source": api_health.to_dict(),
            "scheduler": {"state": get_scheduler().state.value}
        }
    }
    return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=content)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(500)
async def internal_error_handler(request, exc):
    logger.error(f"Internal server error: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please check the logs for details."
        }
    )


# =============================================================================
# MAIN APPLICATION ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "nodepilot.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True
    )
