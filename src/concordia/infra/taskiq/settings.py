"""TaskIQ configuration using Pydantic settings.

Provides type-safe configuration for the TaskIQ broker, result backend,
scheduler and the reconciliation schedules. Settings are loaded from
environment variables with ``TASKIQ_`` prefix.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskIQSettings(BaseSettings):
    """Configuration for TaskIQ broker and scheduler.

    Environment Variables:
        TASKIQ_REDIS_URL: Redis URL for broker/scheduler
            (default: redis://localhost:6379/1)
        TASKIQ_RESULT_TTL: Result backend TTL in seconds (default: 3600)
        TASKIQ_QUEUE_NAME: Redis stream name (default: concordia)
        TASKIQ_DRIFT_REPAIR_CRON: Cron expression for the drift repair pass
            (empty string disables the schedule)
        TASKIQ_ORPHAN_SWEEP_CRON: Cron expression for the orphan sweep
            (empty string disables the schedule)

    Example:
        >>> settings = TaskIQSettings()
        >>> settings.redis_url
        'redis://localhost:6379/1'
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKIQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis_url: str = Field(
        default="redis://localhost:6379/1",
        description="Redis URL for TaskIQ broker (database 1 by default)",
    )
    result_ttl: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Result backend TTL in seconds",
    )
    queue_name: str = Field(
        default="concordia",
        min_length=1,
        description="Redis stream name used by the broker",
    )
    drift_repair_cron: str = Field(
        default="0 3 * * *",
        description="Cron schedule for the drift repair pass",
    )
    orphan_sweep_cron: str = Field(
        default="30 3 * * *",
        description="Cron schedule for the orphan sweep",
    )

    @field_validator("drift_repair_cron", "orphan_sweep_cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        v = v.strip()
        if v and len(v.split()) != 5:
            raise ValueError("cron schedules must have five fields")
        return v


@lru_cache(maxsize=1)
def get_taskiq_settings() -> TaskIQSettings:
    """Get cached TaskIQ settings singleton.

    Returns:
        TaskIQSettings instance loaded from environment.
    """
    return TaskIQSettings()
