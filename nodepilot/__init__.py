"""NodePilot - schedule-driven start/stop control for a fleet of compute nodes."""

__version__ = "1.0.0"
