"""Concordia Infra TaskIQ -- scheduled reconciliation worker."""

from concordia.infra.taskiq.broker import (
    get_broker,
    get_result_backend,
    get_scheduler,
)
from concordia.infra.taskiq.errors import TaskConfigurationError, TaskIQBrokerError, TaskIQError
from concordia.infra.taskiq.lifespan import lifespan_contribution
from concordia.infra.taskiq.settings import TaskIQSettings, get_taskiq_settings
from concordia.infra.taskiq.tasks import (
    RECONCILE_DRIFT,
    RUN_RECONCILIATION,
    SWEEP_ORPHANS,
    register_reconciliation_tasks,
)

__all__ = [
    "RECONCILE_DRIFT",
    "RUN_RECONCILIATION",
    "SWEEP_ORPHANS",
    "TaskConfigurationError",
    "TaskIQBrokerError",
    "TaskIQError",
    "TaskIQSettings",
    "get_broker",
    "get_result_backend",
    "get_scheduler",
    "get_taskiq_settings",
    "lifespan_contribution",
    "register_reconciliation_tasks",
]
