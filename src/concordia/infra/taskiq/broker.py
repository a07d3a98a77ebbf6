"""TaskIQ broker and scheduler configuration with Redis Stream.

Factory functions for the broker, result backend and scheduler used by the
reconciliation worker. Redis Stream gives reliable delivery with
acknowledgements, so a worker crash mid-pass re-delivers the task.

Usage:
    # Start worker
    # taskiq worker concordia.worker:broker

    # Start scheduler (single instance only)
    # taskiq scheduler concordia.worker:scheduler --skip-first-run
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from taskiq import TaskiqScheduler
from taskiq.schedule_sources import LabelScheduleSource
from taskiq_redis import (
    ListRedisScheduleSource,
    RedisAsyncResultBackend,
    RedisStreamBroker,
)

from concordia.infra.taskiq.settings import get_taskiq_settings


@lru_cache(maxsize=1)
def get_result_backend() -> RedisAsyncResultBackend[Any]:
    """Get or create the TaskIQ result backend.

    Returns:
        RedisAsyncResultBackend configured from TaskIQSettings.
    """
    settings = get_taskiq_settings()
    return RedisAsyncResultBackend(
        redis_url=settings.redis_url,
        result_ex_time=settings.result_ttl,
    )


@lru_cache(maxsize=1)
def get_broker() -> RedisStreamBroker:
    """Get or create the TaskIQ broker.

    Returns:
        RedisStreamBroker configured from TaskIQSettings with result backend.
    """
    settings = get_taskiq_settings()
    return RedisStreamBroker(
        url=settings.redis_url,
        queue_name=settings.queue_name,
    ).with_result_backend(get_result_backend())


@lru_cache(maxsize=1)
def get_scheduler() -> TaskiqScheduler:
    """Get or create the TaskIQ scheduler.

    Uses dual schedule sources:
    - LabelScheduleSource: the cron labels set when the reconciliation
      tasks are registered
    - ListRedisScheduleSource: runtime-configurable schedules stored in Redis

    WARNING: Only run ONE scheduler instance per deployment. Two schedulers
    would start overlapping reconciliation passes.

    Returns:
        TaskiqScheduler configured with the broker and schedule sources.
    """
    settings = get_taskiq_settings()
    _broker = get_broker()
    return TaskiqScheduler(
        broker=_broker,
        sources=[
            LabelScheduleSource(_broker),
            ListRedisScheduleSource(settings.redis_url),
        ],
    )
