from .schedule import Schedule, ScheduleType
from .database_models import Base, Machine, NodeStatusRow

__all__ = ["Base", "Machine", "NodeStatusRow", "Schedule", "ScheduleType"]
