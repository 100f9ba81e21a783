"""Observability helpers."""

from .points import PointsObservabilityStore, get_points_store
from .scheduler import JobSchedulerObservabilityStore, get_job_scheduler_store

__all__ = [
    "JobSchedulerObservabilityStore",
    "PointsObservabilityStore",
    "get_job_scheduler_store",
    "get_points_store",
]
