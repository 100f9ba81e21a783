"""Observability store for the points job scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class JobRunState:
    """Mutable per-job counters; copied out through ``as_dict``."""

    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    run_failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    total_runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_retry_delay_seconds: float | None = None
    last_summary: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": {
                "runs": self.runs,
                "success": self.successes,
                "run_failures": self.run_failures,
                "attempt_failures": self.attempt_failures,
                "retries": self.retries,
                "consecutive_failures": self.consecutive_failures,
            },
            "total_runtime_seconds": self.total_runtime_seconds,
            "last_started_at": _iso(self.last_started_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
            "last_summary": dict(self.last_summary),
        }


@dataclass
class JobSchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, Dict[str, object]]

    def as_dict(self) -> Dict[str, object]:
        return {"totals": self.totals, "jobs": self.jobs}


class JobSchedulerObservabilityStore:
    """Tracks dispatches, retries and outcomes of scheduled points jobs."""

    def __init__(self) -> None:
        self._lock: Lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.get(job_id)
        if state is None:
            state = self._jobs[job_id] = JobRunState(job_id=job_id, task=task)
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_started_at = _utcnow()
            state.last_attempts = 0
            state.last_retry_delay_seconds = None

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.consecutive_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_retry_delay_seconds = delay_seconds
            state.last_attempts = attempts

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        summary: Dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.successes += 1
            state.total_runtime_seconds += runtime_seconds
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.consecutive_failures = 0
            state.last_error = None
            state.last_error_at = None
            state.last_summary = dict(summary or {})

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.run_failures += 1
            state.total_runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def job(self, job_id: str) -> Dict[str, object] | None:
        with self._lock:
            state = self._jobs.get(job_id)
            return state.as_dict() if state else None

    def snapshot(self) -> JobSchedulerSnapshot:
        with self._lock:
            states = list(self._jobs.values())
            return JobSchedulerSnapshot(
                totals={
                    "runs": sum(state.runs for state in states),
                    "success": sum(state.successes for state in states),
                    "run_failures": sum(state.run_failures for state in states),
                    "attempt_failures": sum(state.attempt_failures for state in states),
                    "retries": sum(state.retries for state in states),
                },
                jobs={state.job_id: state.as_dict() for state in states},
            )


_SCHEDULER_STORE = JobSchedulerObservabilityStore()


def get_job_scheduler_store() -> JobSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "JobSchedulerObservabilityStore",
    "JobSchedulerSnapshot",
    "get_job_scheduler_store",
]
