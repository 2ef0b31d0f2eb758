"""
NodePilot - Health Check Endpoints
==================================

Liveness, component status, status-source health and scheduler
observability, plus host and process resource metrics.
"""

import logging
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ...database import db_manager
from ...dependencies import (
    get_action_executor_dependency, get_scheduler_dependency, get_status_cache_dependency
)
from ...scheduler.scheduler import MachineScheduler
from ...schemas import ApiHealthSchema, SchedulerStatusResponse
from ...services.action_executor import ActionExecutor
from ...services.status_cache import StatusCache
from ...utils.helpers import get_app_info


# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# BASIC HEALTH ENDPOINTS
# =============================================================================

@router.get("/")
async def basic_health_check():
    """Simple up/down check for load balancers."""
    app_info = get_app_info()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": app_info["name"],
        "version": app_info["version"]
    }


@router.get("/detailed")
async def detailed_health_check(
    status_cache: StatusCache = Depends(get_status_cache_dependency),
    scheduler: MachineScheduler = Depends(get_scheduler_dependency),
    executor: ActionExecutor = Depends(get_action_executor_dependency)
):
    """
    Health of every component.

    The database is required: when it is down the response is 503. A
    failing status source or a stopped scheduler only degrades the service,
    since the cache keeps serving last-known-good data.
    """
    health_status = {
        "overall_status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {},
        "system_info": get_app_info()
    }

    db_health = db_manager.health_check()
    health_status["components"]["database"] = db_health
    if db_health["status"] != "healthy":
        health_status["overall_status"] = "unhealthy"

    api_health = status_cache.health
    health_status["components"]["status_source"] = {
        "status": "healthy" if api_health.is_working else "degraded",
        **api_health.to_dict(),
        **status_cache.get_usage_stats()
    }
    if not api_health.is_working and health_status["overall_status"] == "healthy":
        health_status["overall_status"] = "degraded"

    scheduler_status = scheduler.get_status()
    health_status["components"]["scheduler"] = {
        "status": "healthy" if scheduler.is_started else "stopped",
        "state": scheduler_status["state"],
        "last_tick_duration_seconds": scheduler_status["last_tick_duration_seconds"],
        "statistics": scheduler_status["statistics"],
    }

    health_status["components"]["action_executor"] = executor.get_usage_stats()

    if health_status["overall_status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)
    return JSONResponse(status_code=200, content=health_status)


# =============================================================================
# COMPONENT-SPECIFIC HEALTH ENDPOINTS
# =============================================================================

@router.get("/status-source", response_model=ApiHealthSchema)
async def status_source_health(status_cache: StatusCache = Depends(get_status_cache_dependency)):
    """ApiHealth of the remote node status API. Never triggers a poll."""
    return ApiHealthSchema.model_validate(status_cache.health)


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_health(
    limit: int = Query(default=10, ge=0, le=1000, description="Number of recent ticks to include"),
    scheduler: MachineScheduler = Depends(get_scheduler_dependency)
):
    """Scheduler state, counters and recent tick reports."""
    status = scheduler.get_status()
    status["recent_ticks"] = scheduler.get_history(limit=limit)
    return status


# =============================================================================
# SYSTEM METRICS ENDPOINT
# =============================================================================

@router.get("/system")
async def system_metrics():
    """Resource usage of the host and of this process."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')
    process = psutil.Process()

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cpu": {
            "percent": psutil.cpu_percent(interval=None),
            "count": psutil.cpu_count()
        },
        "memory": {
            "total_gb": round(memory.total / (1024**3), 2),
            "available_gb": round(memory.available / (1024**3), 2),
            "percent_used": memory.percent
        },
        "disk": {
            "total_gb": round(disk.total / (1024**3), 2),
            "free_gb": round(disk.free / (1024**3), 2),
            "percent_used": round((disk.used / disk.total) * 100, 1)
        },
        "process": {
            "pid": process.pid,
            "memory_mb": round(process.memory_info().rss / (1024**2), 2),
            "num_threads": process.num_threads()
        }
    }
