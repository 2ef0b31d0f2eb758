"""
Schedule value type shared by the database models, the API schemas and the
schedule evaluator.
"""

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional


class ScheduleType(str, enum.Enum):
    """Firing policies a machine schedule can use."""
    DAILY = "daily"    # every day at the configured minute
    RANGE = "range"    # at the configured minute, only between two dates


@dataclass(frozen=True)
class Schedule:
    """
    When a machine should be started or stopped.

    `type` is kept as a plain string so values written by older clients
    (or typos) survive a round trip; the evaluator refuses to fire on
    anything it does not recognise.
    """
    enabled: bool = False
    type: str = ScheduleType.DAILY.value
    time: str = ""
    from_date: Optional[date] = None
    to_date: Optional[date] = None

    @classmethod
    def disabled(cls) -> "Schedule":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'type': self.type,
            'time': self.time,
            'from_date': self.from_date.isoformat() if self.from_date else None,
            'to_date': self.to_date.isoformat() if self.to_date else None,
        }
