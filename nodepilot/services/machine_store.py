"""
NodePilot - Machine Store
=========================

Persistence operations for machine records.

The API layer uses `MachineStore` with a request-scoped session for CRUD.
The scheduler never holds ORM objects across awaits; it calls
`load_scheduled_machines()`, which opens its own short session and returns
detached `MachineSnapshot` values.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from sqlalchemy.orm import Session

from ..models.database_models import Machine, utc_now
from ..models.schedule import Schedule


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MachineSnapshot:
    """Detached, read-only view of a machine used during a scheduler tick."""
    id: uuid.UUID
    name: str
    node_id: str
    start_url: str
    stop_url: str
    start_schedule: Schedule
    stop_schedule: Schedule

    @classmethod
    def from_model(cls, machine: Machine) -> "MachineSnapshot":
        return cls(
            id=machine.id,
            name=machine.name,
            node_id=machine.node_id,
            start_url=machine.start_url,
            stop_url=machine.stop_url,
            start_schedule=machine.start_schedule,
            stop_schedule=machine.stop_schedule,
        )


class MachineStore:
    """CRUD over the `machines` table bound to one session."""

    def __init__(self, session: Session):
        self.session = session

    def list_machines(self) -> List[Machine]:
        return self.session.query(Machine).order_by(Machine.created_at, Machine.name).all()

    def list_scheduled(self) -> List[Machine]:
        """Machines with at least one enabled schedule."""
        return (
            self.session.query(Machine)
            .filter(Machine.has_enabled_schedule())
            .order_by(Machine.name)
            .all()
        )

    def get(self, machine_id: Union[str, uuid.UUID]) -> Machine:
        """
        Fetch one machine.

        Raises:
            MachineNotFoundError: If no machine has this id
        """
        try:
            key = machine_id if isinstance(machine_id, uuid.UUID) else uuid.UUID(str(machine_id))
        except ValueError:
            raise MachineNotFoundError(f"Machine not found: {machine_id}") from None

        machine = self.session.get(Machine, key)
        if machine is None:
            raise MachineNotFoundError(f"Machine not found: {machine_id}")
        return machine

    def create(self, name: str, node_id: str, start_url: str, stop_url: str) -> Machine:
        machine = Machine(
            name=name,
            node_id=node_id,
            start_url=start_url,
            stop_url=stop_url,
            status="unknown",
            last_updated=utc_now(),
        )
        machine.start_schedule = Schedule.disabled()
        machine.stop_schedule = Schedule.disabled()

        self.session.add(machine)
        self.session.commit()
        self.session.refresh(machine)

        logger.info(f"Created machine {machine.id} ({machine.name})")
        return machine

    def update_details(
        self,
        machine_id: Union[str, uuid.UUID],
        name: str,
        node_id: str,
        start_url: str,
        stop_url: str
    ) -> Machine:
        """Replace name, node reference and control URLs. Schedules are untouched."""
        machine = self.get(machine_id)
        machine.name = name
        machine.node_id = node_id
        machine.start_url = start_url
        machine.stop_url = stop_url
        machine.last_updated = utc_now()

        self.session.commit()
        self.session.refresh(machine)

        logger.info(f"Updated machine {machine.id}")
        return machine

    def update_schedules(
        self,
        machine_id: Union[str, uuid.UUID],
        start_schedule: Schedule,
        stop_schedule: Schedule
    ) -> Machine:
        machine = self.get(machine_id)
        machine.start_schedule = start_schedule
        machine.stop_schedule = stop_schedule
        machine.last_updated = utc_now()

        self.session.commit()
        self.session.refresh(machine)

        logger.info(
            f"Updated schedules for machine {machine.id}: "
            f"start={start_schedule.to_dict()} stop={stop_schedule.to_dict()}"
        )
        return machine

    def delete(self, machine_id: Union[str, uuid.UUID]) -> None:
        machine = self.get(machine_id)
        self.session.delete(machine)
        self.session.commit()
        logger.info(f"Deleted machine {machine_id}")


def load_scheduled_machines(database_manager=None) -> List[MachineSnapshot]:
    """Open a short-lived session and return every scheduled machine as a snapshot."""
    if database_manager is None:
        from ..database import db_manager
        database_manager = db_manager

    with database_manager.get_session_context() as session:
        return [MachineSnapshot.from_model(m) for m in MachineStore(session).list_scheduled()]


def make_machine_source(database_manager=None) -> Callable[[], List[MachineSnapshot]]:
    """Bind `load_scheduled_machines` to a database manager for the scheduler."""
    return lambda: load_scheduled_machines(database_manager)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class MachineNotFoundError(Exception):
    """Raised when a machine id does not exist."""
    pass
