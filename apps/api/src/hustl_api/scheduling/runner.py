"""APScheduler runtime for recurring points jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from hustl_api.observability.scheduler import get_job_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(path: str) -> JobCallable:
    """Import ``package.module:function`` (or dotted) and require a coroutine function."""

    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ValueError(f"Invalid task path: {path}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {path} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {path} must be an async function")
    return func


class PointsJobScheduler:
    """Register points maintenance jobs on an ``AsyncIOScheduler``."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_job_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.enabled_jobs:
            scheduler.add_job(
                self.build_runner(job, resolve_task(job.task)),
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered points job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info(
            "Points job scheduler started",
            jobs=len(config.enabled_jobs),
            disabled=len(config.jobs) - len(config.enabled_jobs),
        )

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Points job scheduler stopped")

    def build_runner(self, job: JobDefinition, func: JobCallable) -> Callable[[], Awaitable[Any]]:
        """Wrap ``func`` with the job's retry policy and metrics."""

        async def _runner() -> Any:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, job.max_attempts + 1):
                try:
                    summary = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error)
                    if attempt >= job.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error,
                        )
                        logger.exception("Points job failed after retries", job_id=job.id, attempts=attempt)
                        return None

                    delay = job.backoff_seconds(attempt)
                    self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning(
                        "Points job retrying",
                        job_id=job.id,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=error,
                    )
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    summary=summary if isinstance(summary, dict) else None,
                )
                logger.info(
                    "Points job completed",
                    job_id=job.id,
                    attempts=attempt,
                    runtime_seconds=round(runtime_seconds, 3),
                )
                return summary
            return None

        return _runner

    def health(self) -> dict[str, object]:
        snapshot = self._observability.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "totals": snapshot.totals,
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "max_attempts": job.max_attempts,
                    "metrics": snapshot.jobs.get(job.id),
                }
                for job in jobs
            ],
        }


__all__ = ["PointsJobScheduler", "resolve_task"]
