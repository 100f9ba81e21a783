from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.core.settings import settings
from hustl_api.db.session import get_session
from hustl_api.observability.points import get_points_store
from hustl_api.observability.scheduler import get_job_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment, "version": settings.version}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    ledger = get_points_store().snapshot()
    last_run = ledger.last_consistency_run
    if last_run is None:
        components["ledger_consistency"] = ComponentStatus(status="starting", detail="No consistency check recorded yet")
    elif last_run.mismatches > last_run.corrected:
        components["ledger_consistency"] = ComponentStatus(
            status="degraded",
            detail=f"{last_run.mismatches - last_run.corrected} balances drifting from transaction log",
            last_error_at=last_run.completed_at.isoformat(),
        )
        status = "degraded" if status != "error" else status
    else:
        components["ledger_consistency"] = ComponentStatus(
            status="ready",
            last_success_at=last_run.completed_at.isoformat(),
        )

    scheduler = getattr(request.app.state, "points_job_scheduler", None)
    if settings.points_job_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        scheduler_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = None if running else "Points scheduler not running"
        snapshot = get_job_scheduler_store().snapshot()
        failing_jobs = [
            job_id
            for job_id, job in snapshot.jobs.items()
            if job["totals"].get("consecutive_failures", 0) > 0  # type: ignore[union-attr]
        ]
        if failing_jobs:
            scheduler_status = "error"
            detail = f"Jobs failing: {', '.join(failing_jobs)}"
            status = "error"
        elif not running:
            status = "degraded" if status != "error" else status
        components["points_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["points_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Points scheduler disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
