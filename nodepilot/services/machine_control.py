"""
Manual and scheduled start/stop triggering for a single machine.
"""

import enum
import logging
from typing import Optional

from .action_executor import ActionExecutor, ActionOutcome, get_action_executor
from .machine_store import MachineSnapshot, MachineStore


logger = logging.getLogger(__name__)


class Direction(str, enum.Enum):
    START = "start"
    STOP = "stop"


def action_url(machine, direction: Direction) -> str:
    """Return the start or stop URL of a Machine or MachineSnapshot."""
    return machine.start_url if direction == Direction.START else machine.stop_url


async def trigger(
    machine,
    direction: Direction,
    executor: Optional[ActionExecutor] = None
) -> ActionOutcome:
    """
    Run the executor against the machine's URL for `direction`.

    Independent of the scheduler loop; a manual trigger may run while a
    tick is acting on the same machine.

    Raises:
        ActionNotConfiguredError: If the machine has no URL for this direction
    """
    direction = Direction(direction)
    url = action_url(machine, direction)
    if not url:
        raise ActionNotConfiguredError(f"Machine {machine.id} has no {direction.value} URL configured")

    executor = executor or get_action_executor()

    logger.info(f"Triggering {direction.value} for machine {machine.id} ({machine.name})")
    outcome = await executor.execute(url)

    if outcome.is_success:
        logger.info(f"{direction.value.capitalize()} of {machine.name}: {outcome}")
    else:
        logger.error(f"{direction.value.capitalize()} of {machine.name} failed: {outcome}")
    return outcome


async def trigger_machine(
    machine_id,
    direction: Direction,
    executor: Optional[ActionExecutor] = None,
    database_manager=None
) -> ActionOutcome:
    """
    Look up a machine by id and trigger it.

    The row is read into a snapshot in a short-lived session that is closed
    before any HTTP call is made.

    Raises:
        MachineNotFoundError: If no machine has this id
        ActionNotConfiguredError: If the machine has no URL for this direction
    """
    if database_manager is None:
        from ..database import db_manager
        database_manager = db_manager

    with database_manager.get_session_context() as session:
        machine = MachineSnapshot.from_model(MachineStore(session).get(machine_id))

    return await trigger(machine, direction, executor)


class ActionNotConfiguredError(Exception):
    """Raised when a machine has no URL for the requested action."""
    pass
