"""
NodePilot - Node Status Endpoints
=================================

Read-only access to the status cache. These endpoints serve whatever the
cache holds and never poll the status API themselves.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...dependencies import get_status_cache_dependency
from ...schemas import ApiHealthSchema, NodeSnapshotResponse, NodeStatusSchema
from ...services.status_cache import StatusCache


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=NodeSnapshotResponse)
async def get_node_snapshot(status_cache: StatusCache = Depends(get_status_cache_dependency)):
    """All cached node rows plus the health of the status source."""
    snapshot = status_cache.snapshot()
    nodes = sorted(snapshot.nodes.values(), key=lambda record: record.node_id)
    return NodeSnapshotResponse(
        nodes=[NodeStatusSchema.model_validate(record) for record in nodes],
        api_health=ApiHealthSchema.model_validate(snapshot.health),
        total_nodes=len(nodes)
    )


@router.get("/{node_id}", response_model=NodeStatusSchema)
async def get_node(node_id: str, status_cache: StatusCache = Depends(get_status_cache_dependency)):
    record = status_cache.get_node(node_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No status known for node {node_id}")
    return NodeStatusSchema.model_validate(record)
