"""TaskIQ worker and scheduler entry point.

Usage:
    taskiq worker concordia.worker:broker
    taskiq scheduler concordia.worker:scheduler --skip-first-run

Importing this module creates the broker from ``TASKIQ_*`` settings and
registers the reconciliation tasks. The worker enters the engine lifespan
(logging, tracing, Firestore, HTTP client) on startup and leaves it on
shutdown.
"""

from __future__ import annotations

from contextlib import AsyncExitStack

from taskiq import TaskiqEvents, TaskiqState

from concordia.app import create_lifespan, get_account_service
from concordia.infra.taskiq import get_broker, get_scheduler, register_reconciliation_tasks

broker = get_broker()
scheduler = get_scheduler()
tasks = register_reconciliation_tasks(broker, get_account_service)

_lifespan = create_lifespan()
_stack = AsyncExitStack()


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def _startup(state: TaskiqState) -> None:
    await _stack.enter_async_context(_lifespan(state))


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def _shutdown(state: TaskiqState) -> None:
    await _stack.aclose()
