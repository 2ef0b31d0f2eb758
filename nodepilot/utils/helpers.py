"""
NodePilot - Helper Utilities
============================

General-purpose functions shared by the API and the scheduler daemon.
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict

from ..config import get_settings


_PROCESS_STARTED = time.monotonic()


# =============================================================================
# FORMATTING UTILITIES
# =============================================================================

def format_duration(seconds: float) -> str:
    """
    Format a duration in seconds into a human-readable string.

    Returns:
        Formatted string (e.g., "2h 15m", "45.0s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    seconds = seconds % 60

    if minutes < 60:
        return f"{minutes}m {seconds:.0f}s"

    hours = minutes // 60
    minutes = minutes % 60

    if hours < 24:
        return f"{hours}h {minutes}m"

    days = hours // 24
    hours = hours % 24

    return f"{days}d {hours}h"


def get_uptime_seconds() -> float:
    return time.monotonic() - _PROCESS_STARTED


# =============================================================================
# SYSTEM INFORMATION
# =============================================================================

def get_app_info() -> Dict[str, Any]:
    """
    Get application information for the root endpoint and the daemon's
    `--status` output.
    """
    from ..scheduler.config import get_scheduler_settings

    settings = get_settings()
    scheduler_settings = get_scheduler_settings()
    uptime = get_uptime_seconds()

    return {
        'name': settings.app_name,
        'version': settings.app_version,
        'debug_mode': settings.debug,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'uptime_seconds': round(uptime, 3),
        'uptime': format_duration(uptime),
        'system': {
            'platform': platform.platform(),
            'python_version': sys.version.split()[0],
        },
        'configuration': {
            'node_status_url': settings.node_status_url,
            'node_status_refresh_seconds': settings.node_status_refresh_seconds,
            'action_max_retries': settings.action_max_retries,
            'action_retry_delay_seconds': settings.action_retry_delay_seconds,
            'scheduler_enabled': scheduler_settings.enabled,
            'scheduler_timezone': scheduler_settings.timezone,
        }
    }
