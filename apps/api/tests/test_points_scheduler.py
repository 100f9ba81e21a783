from pathlib import Path

import pytest

from hustl_api.jobs.points import expire_points_reservations
from hustl_api.observability.scheduler import get_job_scheduler_store
from hustl_api.scheduling.config import JobDefinition, load_job_definitions
from hustl_api.scheduling.runner import PointsJobScheduler, resolve_task


def _job(job_id: str, *, max_attempts: int) -> JobDefinition:
    return JobDefinition(
        id=job_id,
        task="tests.points",
        cron="* * * * *",
        kwargs={},
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_metrics(tmp_path: Path) -> None:
    store = get_job_scheduler_store()
    store.reset()

    scheduler = PointsJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_job(*, session_factory) -> dict:  # pragma: no cover - exercised in tests
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("boom")
        return {"expired": 3}

    job = _job("job-alpha", max_attempts=3)
    runner = scheduler.build_runner(job, flaky_job)
    summary = await runner()

    assert summary == {"expired": 3}
    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["attempt_failures"] == 1
    assert snapshot.totals["retries"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot["last_success_at"] is not None
    assert job_snapshot["last_error"] is None
    assert job_snapshot["last_summary"] == {"expired": 3}
    assert job_snapshot["totals"]["consecutive_failures"] == 0
    assert attempts == 2


@pytest.mark.asyncio
async def test_scheduler_records_final_failure(tmp_path: Path) -> None:
    store = get_job_scheduler_store()
    store.reset()

    scheduler = PointsJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def failing_job(*, session_factory) -> None:  # pragma: no cover - exercised in tests
        raise RuntimeError("boom")

    job = _job("job-failure", max_attempts=2)
    runner = scheduler.build_runner(job, failing_job)
    assert await runner() is None

    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    job_snapshot = store.job(job.id)
    assert job_snapshot["totals"]["consecutive_failures"] == 2
    assert job_snapshot["last_error"] == "boom"


def test_load_job_definitions(tmp_path: Path) -> None:
    config_path = tmp_path / "schedule.toml"
    config_path.write_text(
        """
        timezone = "Europe/Berlin"

        [jobs.expiry]
        task = "hustl_api.jobs.points.reservations:expire_points_reservations"
        cron = "*/5 * * * *"
        max_attempts = 4
        jitter_seconds = 0

        [jobs.expiry.kwargs]
        limit = 25

        [jobs.audit]
        task = "hustl_api.jobs.points.consistency:run_points_consistency_audit"
        cron = "0 4 * * *"
        enabled = false

        [jobs.broken]
        cron = "0 * * * *"
        """
    )

    config = load_job_definitions(config_path)

    assert config.timezone == "Europe/Berlin"
    assert [job.id for job in config.jobs] == ["expiry", "audit"]
    assert [job.id for job in config.enabled_jobs] == ["expiry"]
    expiry = config.jobs[0]
    assert expiry.kwargs == {"limit": 25}
    assert expiry.max_attempts == 4
    assert expiry.backoff_seconds(1) == 5.0
    assert expiry.backoff_seconds(2) == 10.0

    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "missing.toml")


def test_shipped_schedule_resolves_to_async_tasks() -> None:
    config_path = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
    config = load_job_definitions(config_path)

    assert {job.id for job in config.jobs} == {"points_reservation_expiry", "points_consistency_audit"}
    for job in config.jobs:
        resolve_task(job.task)

    assert resolve_task("hustl_api.jobs.points.reservations.expire_points_reservations") is expire_points_reservations
    with pytest.raises(TypeError):
        resolve_task("hustl_api.scheduling.config:load_job_definitions")
    with pytest.raises(ValueError):
        resolve_task("not_a_path")


@pytest.mark.asyncio
async def test_scheduler_registers_enabled_jobs(tmp_path: Path) -> None:
    config_path = tmp_path / "schedule.toml"
    config_path.write_text(
        """
        timezone = "UTC"

        [jobs.expiry]
        task = "hustl_api.jobs.points.reservations:expire_points_reservations"
        cron = "*/15 * * * *"

        [jobs.audit]
        task = "hustl_api.jobs.points.consistency:run_points_consistency_audit"
        cron = "30 3 * * *"
        enabled = false
        """
    )
    scheduler = PointsJobScheduler(session_factory=lambda: None, config_path=config_path)

    scheduler.start()
    try:
        assert scheduler.is_running
        health = scheduler.health()
        assert health["running"] is True
        assert health["configured_jobs"] == 2
        assert {job["id"]: job["enabled"] for job in health["jobs"]} == {"expiry": True, "audit": False}
        assert [job.id for job in scheduler._scheduler.get_jobs()] == ["expiry"]
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
