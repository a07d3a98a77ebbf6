"""Scheduled reconciliation tasks.

Registers the drift repair pass and the orphan sweep on a TaskIQ broker.
Each task builds its :class:`AccountService` through a factory so the worker
process owns the store and provider clients, and returns the report as a
plain dict so any result backend can serialize it.

Example:
    >>> tasks = register_reconciliation_tasks(broker, build_account_service)
    >>> await tasks["reconcile_drift"].kiq(dry_run=True)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from concordia.domain.accounts.reconciliation import ReconciliationMode
from concordia.infra.taskiq.errors import TaskConfigurationError
from concordia.infra.taskiq.settings import TaskIQSettings, get_taskiq_settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from taskiq import AsyncBroker

    from concordia.domain.accounts.service import AccountService

logger = logging.getLogger(__name__)

RECONCILE_DRIFT = "concordia.reconcile_drift"
SWEEP_ORPHANS = "concordia.sweep_orphans"
RUN_RECONCILIATION = "concordia.run_reconciliation"


def _schedule(cron: str) -> list[dict[str, Any]]:
    return [{"cron": cron}] if cron else []


def register_reconciliation_tasks(
    broker: AsyncBroker,
    service_factory: Callable[[], AccountService],
    settings: TaskIQSettings | None = None,
) -> dict[str, Any]:
    """Register the reconciliation tasks on ``broker``.

    Args:
        broker: Broker to register on.
        service_factory: Builds the service a task runs against. Called once
            per task execution.
        settings: Cron schedules; defaults to the environment.

    Returns:
        Decorated tasks keyed by short name (``reconcile_drift``,
        ``sweep_orphans``, ``run_reconciliation``).
    """
    settings = settings or get_taskiq_settings()

    @broker.task(task_name=RECONCILE_DRIFT, schedule=_schedule(settings.drift_repair_cron))
    async def reconcile_drift(dry_run: bool = False) -> dict[str, Any]:
        report = await service_factory().repair_drift(dry_run=dry_run)
        logger.info(
            "drift_repair_task_finished",
            extra={"dry_run": dry_run, "fixed": report.fixed, "errors": len(report.errors)},
        )
        return report.to_dict()

    @broker.task(task_name=SWEEP_ORPHANS, schedule=_schedule(settings.orphan_sweep_cron))
    async def sweep_orphans(dry_run: bool = False) -> dict[str, Any]:
        report = await service_factory().sweep_orphans(dry_run=dry_run)
        logger.info(
            "orphan_sweep_task_finished",
            extra={
                "dry_run": dry_run,
                "orphans": len(report.orphans),
                "deleted": report.deleted,
            },
        )
        return report.to_dict()

    @broker.task(task_name=RUN_RECONCILIATION)
    async def run_reconciliation(mode: str = ReconciliationMode.ANALYZE.value) -> dict[str, Any]:
        try:
            parsed = ReconciliationMode(mode)
        except ValueError as exc:
            raise TaskConfigurationError(f"unknown reconciliation mode {mode!r}") from exc
        report = await service_factory().run_reconciliation(parsed)
        return report.to_dict()

    return {
        "reconcile_drift": reconcile_drift,
        "sweep_orphans": sweep_orphans,
        "run_reconciliation": run_reconciliation,
    }
