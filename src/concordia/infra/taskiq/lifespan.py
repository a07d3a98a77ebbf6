"""TaskIQ lifespan hook for broker startup/shutdown.

Priority 150 ensures TaskIQ starts AFTER persistence (75), since the
reconciliation tasks read and write the document store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from concordia.foundation.application import LIFESPAN_PRIORITY_TASKIQ, LifespanContribution
from concordia.infra.taskiq.broker import get_broker
from concordia.infra.taskiq.errors import TaskIQBrokerError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _taskiq_lifespan(app: Any) -> AsyncIterator[None]:
    """Manage TaskIQ broker lifecycle.

    Args:
        app: The host application object (unused but required by protocol).

    Raises:
        TaskIQBrokerError: The broker could not be started.
    """
    _broker = get_broker()
    try:
        await _broker.startup()
    except (RedisError, OSError) as exc:
        raise TaskIQBrokerError(f"broker startup failed: {exc}") from exc
    logger.info("taskiq_lifespan: broker started")

    try:
        yield
    finally:
        await _broker.shutdown()
        logger.info("taskiq_lifespan: broker shut down")


lifespan_contribution = LifespanContribution(
    hook=_taskiq_lifespan,
    priority=LIFESPAN_PRIORITY_TASKIQ,
)
