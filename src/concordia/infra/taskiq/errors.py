"""TaskIQ error hierarchy for structured error handling.

Distinguishes transient failures (the broker may recover) from permanent
ones so task retry and dead-letter handling can branch on the type.
"""

from __future__ import annotations


class TaskIQError(Exception):
    """Base exception for all TaskIQ infrastructure errors."""

    #: Whether this error type is considered transient (retryable).
    transient: bool = False


class TaskIQBrokerError(TaskIQError):
    """Raised when broker startup/shutdown or connection fails."""

    transient: bool = True


class TaskConfigurationError(TaskIQError):
    """Raised when a task is registered or invoked with invalid arguments.

    Permanent: retrying won't fix a bad argument.
    """

    transient: bool = False
