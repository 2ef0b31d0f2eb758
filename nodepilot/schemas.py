"""
NodePilot - Pydantic Schemas
============================

Request/response models for the REST API.

Schedules are validated here, at the API boundary: times are normalized to
zero-padded HH:MM and enabled range schedules must carry both dates in
order. The evaluator still fails closed on anything that slips past.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models.schedule import Schedule, ScheduleType
from .services.schedule_evaluator import normalize_time


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# BASE SCHEMAS
# =============================================================================

class ResponseBase(BaseModel):
    """Base response model with common fields."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)


# =============================================================================
# SCHEDULE SCHEMAS
# =============================================================================

class ScheduleSchema(BaseModel):
    """A start or stop schedule. Missing fields take the disabled defaults."""
    enabled: bool = False
    type: ScheduleType = ScheduleType.DAILY
    time: str = Field(default="", description="Time of day, HH:MM (24-hour)")
    from_date: Optional[date] = None
    to_date: Optional[date] = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, v):
        if v is None or v.strip() == "":
            return ""
        normalized = normalize_time(v)
        if normalized is None:
            raise ValueError(f"Invalid time {v!r}, expected HH:MM")
        return normalized

    @model_validator(mode='after')
    def validate_window(self):
        if self.enabled and not self.time:
            raise ValueError("An enabled schedule needs a time")

        if self.type == ScheduleType.RANGE and self.enabled:
            if self.from_date is None or self.to_date is None:
                raise ValueError("A range schedule needs both from_date and to_date")

        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must not be after to_date")
        return self

    def to_schedule(self) -> Schedule:
        return Schedule(
            enabled=self.enabled,
            type=self.type.value,
            time=self.time,
            from_date=self.from_date,
            to_date=self.to_date,
        )


class ScheduleResponse(BaseModel):
    """A stored schedule. `type` stays a plain string so unrecognised values remain visible."""
    enabled: bool
    type: str
    time: str
    from_date: Optional[date] = None
    to_date: Optional[date] = None

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleResponse":
        return cls(
            enabled=schedule.enabled,
            type=schedule.type,
            time=schedule.time,
            from_date=schedule.from_date,
            to_date=schedule.to_date,
        )


class ScheduleUpdate(BaseModel):
    """Replaces both schedules of a machine."""
    start_schedule: ScheduleSchema = Field(default_factory=ScheduleSchema)
    stop_schedule: ScheduleSchema = Field(default_factory=ScheduleSchema)


# =============================================================================
# MACHINE SCHEMAS
# =============================================================================

class MachineBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    node_id: str = Field(min_length=1, max_length=255, description="Identity of the node in the status API")
    start_url: str = Field(max_length=2048, description="GET endpoint that starts the node")
    stop_url: str = Field(max_length=2048, description="GET endpoint that stops the node")

    @field_validator('name', 'node_id')
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator('start_url', 'stop_url')
    @classmethod
    def validate_url(cls, v):
        v = v.strip()
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid URL {v!r}, expected http(s)://host/...")
        return v


class MachineCreate(MachineBase):
    """Schema for creating a machine. New machines start with both schedules disabled."""
    pass


class MachineUpdate(MachineBase):
    """Schema for updating a machine's details. Schedules are changed separately."""
    pass


class NodeStatusSchema(BaseModel):
    """Last-known status of one node."""
    model_config = ConfigDict(from_attributes=True)

    node_id: str
    name: str = ""
    os: str = ""
    ip: str = ""
    last_boot_time: str = ""
    status: str = ""
    conn: int = 0
    pwr: float = 0.0
    last_updated: Optional[datetime] = None


class MachineResponse(BaseModel):
    """A machine together with its node's live status from the cache."""
    id: uuid.UUID
    name: str
    node_id: str
    start_url: str
    stop_url: str
    start_schedule: ScheduleResponse
    stop_schedule: ScheduleResponse
    status: str
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    live_status: Optional[NodeStatusSchema] = None

    @classmethod
    def from_model(cls, machine, live_status=None) -> "MachineResponse":
        return cls(
            id=machine.id,
            name=machine.name,
            node_id=machine.node_id,
            start_url=machine.start_url,
            stop_url=machine.stop_url,
            start_schedule=ScheduleResponse.from_schedule(machine.start_schedule),
            stop_schedule=ScheduleResponse.from_schedule(machine.stop_schedule),
            status=live_status.status if live_status is not None and live_status.status else machine.status,
            last_updated=machine.last_updated,
            created_at=machine.created_at,
            updated_at=machine.updated_at,
            live_status=NodeStatusSchema.model_validate(live_status) if live_status is not None else None,
        )


class MachineListResponse(ResponseBase):
    machines: List[MachineResponse]
    total_count: int


class DeleteResponse(ResponseBase):
    id: uuid.UUID


# =============================================================================
# NODE STATUS SCHEMAS
# =============================================================================

class ApiHealthSchema(BaseModel):
    """Health of the remote status API as seen by the cache."""
    model_config = ConfigDict(from_attributes=True)

    is_working: bool
    last_error: str = ""
    last_successful: Optional[datetime] = None
    consecutive_failures: int = 0


class NodeSnapshotResponse(BaseModel):
    nodes: List[NodeStatusSchema]
    api_health: ApiHealthSchema
    total_nodes: int
    timestamp: datetime = Field(default_factory=_utc_now)


# =============================================================================
# ACTION SCHEMAS
# =============================================================================

class ActionOutcomeResponse(BaseModel):
    """Result of a manual start or stop."""
    success: bool
    machine_id: uuid.UUID
    direction: str
    outcome: str
    already_in_state: bool = False
    attempts: int
    status_code: Optional[int] = None
    message: str = ""
    refresh_scheduled: bool = False
    timestamp: datetime = Field(default_factory=_utc_now)


# =============================================================================
# SCHEDULER SCHEMAS
# =============================================================================

class SchedulerStatusResponse(BaseModel):
    state: str
    is_started: bool
    timezone: str
    tick_interval_seconds: float
    refresh_interval_seconds: float
    uptime_seconds: float
    last_tick_duration_seconds: Optional[float] = None
    last_tick: Optional[Dict[str, Any]] = None
    statistics: Dict[str, Any]
    recent_ticks: List[Dict[str, Any]]
