"""Bounded retry for transient collaborator failures.

Only exceptions that declare ``transient = True`` are retried. Validation,
permission and not-found failures pass straight through on the first
attempt: retrying them cannot change the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """True when the exception is flagged as safe to retry."""
    return bool(getattr(exc, "transient", False))


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff policy for transient failures.

    Attributes:
        attempts: Total attempts including the first call.
        initial_wait: Backoff multiplier in seconds.
        max_wait: Upper bound for a single backoff sleep.

    Example:
        >>> policy = RetryPolicy(attempts=3)
        >>> user = await policy.call(store.get, "users", "uid-1")
    """

    attempts: int = 3
    initial_wait: float = 0.2
    max_wait: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            msg = f"attempts must be >= 1, got {self.attempts}"
            raise ValueError(msg)

    def retrying(self) -> AsyncRetrying:
        """Build a fresh tenacity controller for one logical call."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.initial_wait, max=self.max_wait),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await ``fn(*args, **kwargs)``, retrying transient failures.

        Raises:
            The last exception once attempts are exhausted, or the first
            non-transient exception unchanged.
        """
        return await self.retrying()(fn, *args, **kwargs)


NO_RETRY = RetryPolicy(attempts=1, initial_wait=0.0, max_wait=0.0)
