"""Concordia Foundation Application -- orchestration primitives.

Retry policy, bounded fan-out, step supervision, change notification and
lifespan composition shared by the account workflows and the adapters.
"""

from concordia.foundation.application.concurrency import gather_bounded, step_timeout
from concordia.foundation.application.contributions import (
    LIFESPAN_PRIORITY_ENGINE,
    LIFESPAN_PRIORITY_OBSERVABILITY,
    LIFESPAN_PRIORITY_PERSISTENCE,
    LIFESPAN_PRIORITY_TASKIQ,
    LifespanContribution,
    compose_lifespan,
)
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.application.retry import NO_RETRY, RetryPolicy, is_transient

__all__ = [
    "LIFESPAN_PRIORITY_ENGINE",
    "LIFESPAN_PRIORITY_OBSERVABILITY",
    "LIFESPAN_PRIORITY_PERSISTENCE",
    "LIFESPAN_PRIORITY_TASKIQ",
    "NO_RETRY",
    "ChangeNotifier",
    "ChangeTopic",
    "LifespanContribution",
    "RetryPolicy",
    "compose_lifespan",
    "gather_bounded",
    "is_transient",
    "step_timeout",
]
