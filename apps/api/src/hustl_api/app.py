from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from hustl_api.core.settings import settings
from hustl_api.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import PointsJobScheduler


def _session_factory():
    return async_session()


def _resolve_schedule_path() -> Path:
    schedule_path = Path(settings.points_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = _resolve_schedule_path()
    job_scheduler = PointsJobScheduler(session_factory=_session_factory, config_path=schedule_path)
    app.state.points_job_scheduler = job_scheduler

    scheduler_enabled = settings.points_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Points job scheduler failed to start", error=str(exc))
        else:
            logger.info("Points job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Points job scheduler disabled",
            reason="points_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the points ledger service."""
    configure_logging(
        service_name=settings.app_name,
        environment=settings.environment,
        version=settings.version,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Hustl Points API",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=settings.otel_service_name,
            service_version=settings.version,
            environment=settings.environment,
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=settings.otel_exporter_otlp_headers,
        )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": settings.version,
        }

    return app
