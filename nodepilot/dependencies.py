"""
NodePilot - FastAPI Dependencies
================================

Dependency injection functions shared by the endpoint modules. Tests swap
any of these out through `app.dependency_overrides`.
"""

import logging
import time
import uuid
from typing import Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .database import get_db
from .scheduler.scheduler import MachineScheduler, get_scheduler
from .services.action_executor import ActionExecutor, get_action_executor
from .services.machine_store import MachineStore, MachineNotFoundError
from .services.status_cache import StatusCache, get_status_cache


# =============================================================================
# LOGGER SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# SERVICE DEPENDENCIES
# =============================================================================

def get_status_cache_dependency() -> StatusCache:
    return get_status_cache()


def get_action_executor_dependency() -> ActionExecutor:
    return get_action_executor()


def get_scheduler_dependency() -> MachineScheduler:
    return get_scheduler()


def get_machine_store(db: Session = Depends(get_db)) -> Generator[MachineStore, None, None]:
    """Provide a MachineStore bound to the request's session."""
    yield MachineStore(db)


def get_machine_or_404(machine_id: str, store: MachineStore = Depends(get_machine_store)):
    """Resolve the `machine_id` path parameter or answer 404."""
    try:
        return store.get(machine_id)
    except MachineNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# REQUEST LOGGING DEPENDENCIES
# =============================================================================

class RequestLogger:
    """Times a request and logs its start and end with a short request id."""

    def __init__(self, request: Request):
        self.request = request
        self.start_time = time.time()
        self.request_id = uuid.uuid4().hex[:8]

    def log_request_start(self):
        logger.debug(
            f"Request started: {self.request.method} {self.request.url.path}",
            extra={
                "request_id": self.request_id,
                "method": self.request.method,
                "path": self.request.url.path,
                "ip_address": self.request.client.host if self.request.client else None
            }
        )

    def log_request_end(self, status_code: int = 200, error: str = None):
        log_data = {
            "request_id": self.request_id,
            "method": self.request.method,
            "path": self.request.url.path,
            "status_code": status_code,
            "duration_seconds": time.time() - self.start_time,
        }

        if error:
            log_data["error"] = error
            logger.error(f"Request failed: {self.request.method} {self.request.url.path}", extra=log_data)
        else:
            logger.info(f"Request completed: {self.request.method} {self.request.url.path}", extra=log_data)
