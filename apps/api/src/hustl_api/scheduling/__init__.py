"""Scheduling utilities for recurring points maintenance."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import PointsJobScheduler, resolve_task

__all__ = ["JobDefinition", "PointsJobScheduler", "ScheduleConfig", "load_job_definitions", "resolve_task"]
