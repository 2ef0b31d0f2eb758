"""
NodePilot - API Router Configuration
====================================

Combines the endpoint modules under the versioned API prefix.
"""

from fastapi import APIRouter

from .endpoints import health, machines, nodes

api_router = APIRouter()

api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
    responses={
        503: {"description": "Service unavailable"},
        200: {"description": "Service healthy"}
    }
)

api_router.include_router(
    machines.router,
    prefix="/machines",
    tags=["machines"],
    responses={
        404: {"description": "Machine not found"},
        422: {"description": "Invalid machine or schedule"},
        502: {"description": "Control endpoint failed"}
    }
)

api_router.include_router(
    nodes.router,
    prefix="/nodes",
    tags=["nodes"]
)
