"""Application Settings - Pydantic Settings for environment configuration."""

import json
from datetime import time
from functools import lru_cache
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.contracts.schedule import BreakInterval, ScheduleConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    Validation is automatic via Pydantic.
    """

    # Schedule
    business_start: time = time(8, 0)
    business_end: time = time(17, 0)
    breaks: str = "12:00-13:00"
    tier_rank: str = ""
    buffer_minutes: int = 0
    default_duration_minutes: int = 30
    max_queue_capacity: int = 15
    shop_timezone: str = "UTC"

    # Engine
    store_backend: Literal["memory", "supabase"] = "memory"
    max_commit_attempts: int = 3
    operation_timeout_seconds: float = 5.0

    # Database (Supabase)
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""
    database_url: str = ""  # Direct Postgres connection, used by scripts

    # Redis (Idempotency)
    redis_url: str = "redis://localhost:6379"
    idempotency_ttl_seconds: int = 86400
    enable_idempotency: bool = True

    # Observability
    otlp_endpoint: str = "http://localhost:4318/v1/traces"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_tracing: bool = False

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    api_port: int = 8000
    api_host: str = "0.0.0.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("max_commit_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_commit_attempts must be >= 1")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    def schedule_config(self) -> ScheduleConfig:
        """Build the validated schedule configuration.

        ``BREAKS`` is a comma separated list of ``HH:MM-HH:MM`` ranges and
        ``TIER_RANK`` an optional JSON object such as ``{"urgent": 0, ...}``.
        """
        breaks = [
            BreakInterval.parse(item) for item in self.breaks.split(",") if item.strip()
        ]
        data: dict[str, Any] = {
            "business_start": self.business_start,
            "business_end": self.business_end,
            "breaks": breaks,
            "buffer_minutes": self.buffer_minutes,
            "default_duration_minutes": self.default_duration_minutes,
            "max_queue_capacity": self.max_queue_capacity,
            "timezone": self.shop_timezone,
        }
        if self.tier_rank:
            data["tier_rank"] = json.loads(self.tier_rank)
        return ScheduleConfig(**data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache for performance - settings are loaded once.
    """
    return Settings()
