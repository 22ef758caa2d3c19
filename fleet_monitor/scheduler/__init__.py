"""Scheduler module for driving recurring fleet sweeps."""

from .health_monitor import HealthMonitorService, SweepResult
from .job_scheduler import JobScheduler

__all__ = ["HealthMonitorService", "JobScheduler", "SweepResult"]
