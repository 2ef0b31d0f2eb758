"""
NodePilot - Database Models
===========================

This module defines the database schema for NodePilot using SQLAlchemy ORM.

Two tables back the service:
- machines: the managed compute nodes, their control URLs and their
  start/stop schedules
- node_status: the last-known-good status of every node reported by the
  remote status API (written only by the status cache)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Date, Boolean, Index, or_
)
from sqlalchemy.orm import declarative_base, Session
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator, CHAR
from sqlalchemy.dialects.postgresql import UUID as PostgreSQLUUID

from .schedule import Schedule, ScheduleType


class UniversalUUID(TypeDecorator):
    """
    Universal UUID type that works with both PostgreSQL and SQLite.

    - PostgreSQL: Uses native UUID type
    - SQLite and others: Stores UUIDs as 36-character strings
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQLUUID(as_uuid=True))
        else:
            return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            return uuid.UUID(value)
        return value


# =============================================================================
# BASE MODEL SETUP
# =============================================================================

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Adds created_at/updated_at bookkeeping columns to a model."""
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="When this record was created"
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="When this record was last updated"
    )


class UUIDMixin:
    """Adds a UUID primary key to a model."""
    id = Column(
        UniversalUUID(),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier for this record"
    )


# =============================================================================
# CORE DATA MODELS
# =============================================================================

class Machine(Base, UUIDMixin, TimestampMixin):
    """
    A managed compute node with start/stop control endpoints.

    The start and stop schedules are stored as flattened columns so the
    scheduler can select "machines with at least one enabled schedule" with
    a plain indexed query; callers work with them through the
    `start_schedule` / `stop_schedule` properties.
    """
    __tablename__ = "machines"

    name = Column(String(255), nullable=False, comment="Display name")
    node_id = Column(String(255), nullable=False, comment="Identity of the node in the status API")
    start_url = Column(String(2048), nullable=False, comment="Endpoint that starts the node")
    stop_url = Column(String(2048), nullable=False, comment="Endpoint that stops the node")

    # Start schedule
    start_enabled = Column(Boolean, default=False, nullable=False)
    start_type = Column(String(16), default=ScheduleType.DAILY.value, nullable=False)
    start_time = Column(String(5), default="", nullable=False, comment="HH:MM")
    start_from_date = Column(Date, nullable=True)
    start_to_date = Column(Date, nullable=True)

    # Stop schedule
    stop_enabled = Column(Boolean, default=False, nullable=False)
    stop_type = Column(String(16), default=ScheduleType.DAILY.value, nullable=False)
    stop_time = Column(String(5), default="", nullable=False, comment="HH:MM")
    stop_from_date = Column(Date, nullable=True)
    stop_to_date = Column(Date, nullable=True)

    status = Column(String(32), default="unknown", nullable=False, comment="Last-known status")
    last_updated = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index('idx_machines_node_id', 'node_id'),
        Index('idx_machines_start_enabled', 'start_enabled'),
        Index('idx_machines_stop_enabled', 'stop_enabled'),
    )

    @property
    def start_schedule(self) -> Schedule:
        return Schedule(
            enabled=bool(self.start_enabled),
            type=self.start_type or ScheduleType.DAILY.value,
            time=self.start_time or "",
            from_date=self.start_from_date,
            to_date=self.start_to_date,
        )

    @start_schedule.setter
    def start_schedule(self, schedule: Schedule) -> None:
        self.start_enabled = schedule.enabled
        self.start_type = schedule.type
        self.start_time = schedule.time
        self.start_from_date = schedule.from_date
        self.start_to_date = schedule.to_date

    @property
    def stop_schedule(self) -> Schedule:
        return Schedule(
            enabled=bool(self.stop_enabled),
            type=self.stop_type or ScheduleType.DAILY.value,
            time=self.stop_time or "",
            from_date=self.stop_from_date,
            to_date=self.stop_to_date,
        )

    @stop_schedule.setter
    def stop_schedule(self, schedule: Schedule) -> None:
        self.stop_enabled = schedule.enabled
        self.stop_type = schedule.type
        self.stop_time = schedule.time
        self.stop_from_date = schedule.from_date
        self.stop_to_date = schedule.to_date

    @classmethod
    def has_enabled_schedule(cls):
        """SQL expression matching machines with at least one enabled schedule."""
        return or_(cls.start_enabled.is_(True), cls.stop_enabled.is_(True))

    def __repr__(self):
        return f"<Machine(id={self.id}, name={self.name}, node_id={self.node_id})>"


class NodeStatusRow(Base):
    """
    Persisted copy of one node's last-known-good status.

    Rows are upserted by the status cache after every successful poll and
    never deleted, so a restart can serve stale-but-available data before
    the first poll succeeds.
    """
    __tablename__ = "node_status"

    node_id = Column(String(255), primary_key=True)
    name = Column(String(255), default="")
    os = Column(String(255), default="")
    ip = Column(String(64), default="")
    last_boot_time = Column(String(64), default="")
    status = Column(String(64), default="")
    conn = Column(Integer, default=0, nullable=False, comment="Open connection count")
    pwr = Column(Float, default=0.0, nullable=False, comment="Power state/metric")
    last_updated = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<NodeStatusRow(node_id={self.node_id}, status={self.status})>"


# =============================================================================
# DATABASE UTILITY FUNCTIONS
# =============================================================================

def create_all_tables(engine):
    """
    Create all database tables.

    It's safe to call multiple times - it won't recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)


def get_table_counts(db_session: Session) -> dict:
    """Get count of records in each table for monitoring."""
    return {
        'machines': db_session.query(Machine).count(),
        'scheduled_machines': db_session.query(Machine).filter(Machine.has_enabled_schedule()).count(),
        'node_status': db_session.query(NodeStatusRow).count(),
    }
