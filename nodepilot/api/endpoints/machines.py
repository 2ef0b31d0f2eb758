"""
NodePilot - Machine Endpoints
=============================

CRUD for managed machines, their start/stop schedules, and manual
start/stop triggers.

Live status comes from the status cache snapshot; nothing here polls the
status API directly. A successful manual trigger asks the scheduler for a
delayed cache refresh so the new power state shows up shortly after.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ...dependencies import (
    get_action_executor_dependency, get_machine_or_404, get_machine_store,
    get_scheduler_dependency, get_status_cache_dependency
)
from ...models.database_models import Machine
from ...scheduler.scheduler import MachineScheduler
from ...schemas import (
    ActionOutcomeResponse, DeleteResponse, MachineCreate, MachineListResponse,
    MachineResponse, MachineUpdate, ScheduleUpdate
)
from ...services.action_executor import ActionExecutor
from ...services.machine_control import ActionNotConfiguredError, Direction, trigger
from ...services.machine_store import MachineStore
from ...services.status_cache import StatusCache


# =============================================================================
# ROUTER SETUP
# =============================================================================

router = APIRouter()
logger = logging.getLogger(__name__)


def _to_response(machine: Machine, status_cache: StatusCache) -> MachineResponse:
    return MachineResponse.from_model(machine, status_cache.get_node(machine.node_id))


# =============================================================================
# MACHINE CRUD ENDPOINTS
# =============================================================================

@router.get("", response_model=MachineListResponse)
async def list_machines(
    store: MachineStore = Depends(get_machine_store),
    status_cache: StatusCache = Depends(get_status_cache_dependency)
):
    """List all machines, each merged with its node's last-known status."""
    machines = store.list_machines()
    return MachineListResponse(
        machines=[_to_response(machine, status_cache) for machine in machines],
        total_count=len(machines)
    )


@router.post("", response_model=MachineResponse, status_code=201)
async def create_machine(
    payload: MachineCreate,
    store: MachineStore = Depends(get_machine_store),
    status_cache: StatusCache = Depends(get_status_cache_dependency)
):
    """Register a machine. Both schedules start disabled."""
    machine = store.create(
        name=payload.name,
        node_id=payload.node_id,
        start_url=payload.start_url,
        stop_url=payload.stop_url
    )
    return _to_response(machine, status_cache)


@router.get("/{machine_id}", response_model=MachineResponse)
async def get_machine(
    machine: Machine = Depends(get_machine_or_404),
    status_cache: StatusCache = Depends(get_status_cache_dependency)
):
    return _to_response(machine, status_cache)


@router.put("/{machine_id}", response_model=MachineResponse)
async def update_machine(
    machine_id: str,
    payload: MachineUpdate,
    machine: Machine = Depends(get_machine_or_404),
    store: MachineStore = Depends(get_machine_store),
    status_cache: StatusCache = Depends(get_status_cache_dependency)
):
    """Replace name, node reference and control URLs. Schedules are left alone."""
    machine = store.update_details(
        machine.id,
        name=payload.name,
        node_id=payload.node_id,
        start_url=payload.start_url,
        stop_url=payload.stop_url
    )
    return _to_response(machine, status_cache)


@router.put("/{machine_id}/schedule", response_model=MachineResponse)
async def update_schedule(
    machine_id: str,
    payload: ScheduleUpdate,
    machine: Machine = Depends(get_machine_or_404),
    store: MachineStore = Depends(get_machine_store),
    status_cache: StatusCache = Depends(get_status_cache_dependency)
):
    """
    Replace both schedules of a machine.

    Fields left out of the body fall back to a disabled daily schedule with
    no time and no dates.
    """
    machine = store.update_schedules(
        machine.id,
        start_schedule=payload.start_schedule.to_schedule(),
        stop_schedule=payload.stop_schedule.to_schedule()
    )
    return _to_response(machine, status_cache)


@router.delete("/{machine_id}", response_model=DeleteResponse)
async def delete_machine(
    machine_id: str,
    machine: Machine = Depends(get_machine_or_404),
    store: MachineStore = Depends(get_machine_store)
):
    deleted_id = machine.id
    store.delete(deleted_id)
    return DeleteResponse(id=deleted_id, message="Machine deleted")


# =============================================================================
# MANUAL CONTROL ENDPOINTS
# =============================================================================

async def _run_manual_action(
    machine: Machine,
    direction: Direction,
    executor: ActionExecutor,
    scheduler: MachineScheduler
) -> JSONResponse:
    try:
        outcome = await trigger(machine, direction, executor)
    except ActionNotConfiguredError as e:
        raise HTTPException(status_code=404, detail=str(e))

    refresh_scheduled = False
    if outcome.is_success:
        scheduler.request_refresh()
        refresh_scheduled = True

    response = ActionOutcomeResponse(
        success=outcome.is_success,
        machine_id=machine.id,
        direction=direction.value,
        outcome=outcome.kind.value,
        already_in_state=outcome.already_in_state,
        attempts=outcome.attempts,
        status_code=outcome.status_code,
        message=outcome.message,
        refresh_scheduled=refresh_scheduled
    )
    return JSONResponse(
        status_code=200 if outcome.is_success else 502,
        content=response.model_dump(mode="json")
    )


@router.post("/{machine_id}/start", response_model=ActionOutcomeResponse)
async def start_machine(
    machine: Machine = Depends(get_machine_or_404),
    executor: ActionExecutor = Depends(get_action_executor_dependency),
    scheduler: MachineScheduler = Depends(get_scheduler_dependency)
):
    """
    Start a machine now.

    200 when the call succeeded or the machine was already running, 502
    when the control endpoint kept failing.
    """
    return await _run_manual_action(machine, Direction.START, executor, scheduler)


@router.post("/{machine_id}/stop", response_model=ActionOutcomeResponse)
async def stop_machine(
    machine: Machine = Depends(get_machine_or_404),
    executor: ActionExecutor = Depends(get_action_executor_dependency),
    scheduler: MachineScheduler = Depends(get_scheduler_dependency)
):
    """Stop a machine now. Same status codes as start."""
    return await _run_manual_action(machine, Direction.STOP, executor, scheduler)
