"""
NodePilot - Scheduler Configuration
===================================

Settings for the minute tick loop that starts and stops machines on
schedule. Every field can be overridden from the environment with the
SCHEDULER_ prefix, for example SCHEDULER_TIMEZONE=Europe/Berlin.
"""

from functools import lru_cache
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class SchedulerSettings(BaseSettings):
    """Configuration settings for the NodePilot scheduler."""

    # =============================================================================
    # CORE SCHEDULER SETTINGS
    # =============================================================================

    enabled: bool = Field(
        default=True,
        description="Whether the scheduler should run at all"
    )

    timezone: str = Field(
        default="UTC",
        description="Timezone in which schedule times and dates are interpreted"
    )

    status_refresh_seconds: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Interval for the background status refresh (defaults to NODE_STATUS_REFRESH_SECONDS)"
    )

    # =============================================================================
    # OBSERVABILITY AND SHUTDOWN
    # =============================================================================

    history_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Number of recent tick reports kept in memory"
    )

    shutdown_grace_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="How long an in-flight tick may run after shutdown is requested"
    )

    # =============================================================================
    # VALIDATORS
    # =============================================================================

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_prefix = "SCHEDULER_"
        case_sensitive = False
        extra = "ignore"

        json_schema_extra = {
            "example": {
                "enabled": True,
                "timezone": "Europe/Berlin",
                "status_refresh_seconds": 30,
                "history_size": 100
            }
        }


# =============================================================================
# CONFIGURATION FACTORY FUNCTIONS
# =============================================================================

@lru_cache()
def get_scheduler_settings() -> SchedulerSettings:
    """Get scheduler settings from environment and the .env file."""
    return SchedulerSettings()


def create_development_config() -> SchedulerSettings:
    """
    Scheduler configuration for local development.

    Node status refreshes every ten seconds and shutdown is quick. Schedules
    are still evaluated once per wall-clock minute.
    """
    return SchedulerSettings(
        status_refresh_seconds=10.0,
        shutdown_grace_seconds=5.0
    )
