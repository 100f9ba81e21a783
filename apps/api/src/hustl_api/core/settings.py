from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "test", "staging", "production"] = "development"
    app_name: str = "hustl-points-api"
    version: str = "0.1.0"
    database_url: str = "sqlite+aiosqlite:///./hustl_points.db"
    log_level: str = "INFO"

    # Internal API security
    admin_api_key: str = ""

    # Ledger write discipline
    ledger_lock_timeout_seconds: float = 10.0
    ledger_max_write_attempts: int = 3
    history_max_page_size: int = 100

    # Activity catalog
    points_timezone: str = "UTC"

    # Redemption workflow
    redemption_points_per_unit: int = 100
    redemption_min_points: int = 1
    redemption_reservation_ttl_hours: int = 14 * 24
    reservation_sweep_batch_size: int = 100

    @field_validator("redemption_points_per_unit", "redemption_min_points")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    # Consistency auditor
    consistency_recheck_passes: int = 2
    consistency_recheck_delay_seconds: float = 1.0

    # Points automation scheduler
    points_job_scheduler_enabled: bool = False
    points_job_schedule_path: str = "config/schedules.toml"

    # Ledger events
    notification_timeout_seconds: float = 5.0

    # Tracing
    tracing_enabled: bool = True
    otel_service_name: str = "hustl-points-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
