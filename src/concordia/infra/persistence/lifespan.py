"""Persistence lifespan hook for startup/shutdown resource management.

Handles:
- Firestore client creation on startup
- Firestore client close on shutdown

Priority 75 ensures persistence starts AFTER observability (50) and BEFORE
the task broker (150).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from concordia.foundation.application import LIFESPAN_PRIORITY_PERSISTENCE, LifespanContribution
from concordia.infra.persistence.firestore import get_firestore_manager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _persistence_lifespan(app: Any) -> AsyncIterator[None]:
    """Create the Firestore client on startup and close it on shutdown.

    Args:
        app: The host application object (unused but required by protocol).
    """
    manager = get_firestore_manager()
    manager.get_client()
    logger.info("persistence_lifespan: firestore client ready")
    try:
        yield
    finally:
        try:
            await manager.close()
            logger.info("persistence_lifespan: firestore client closed")
        except Exception:
            logger.warning("persistence_lifespan: failed to close firestore client", exc_info=True)


lifespan_contribution = LifespanContribution(
    hook=_persistence_lifespan,
    priority=LIFESPAN_PRIORITY_PERSISTENCE,
)
