"""Structured fan-out and step supervision helpers."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

from concordia.foundation.domain.exceptions import OperationTimeoutError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T]:
    """Run coroutine factories concurrently, at most ``limit`` at a time.

    Results are returned in input order. The first exception cancels the
    remaining work (``asyncio.TaskGroup`` semantics), so callers that want
    per-item error isolation must catch inside the factory.

    Args:
        factories: Zero-argument callables returning awaitables.
        limit: Maximum number of in-flight awaitables.

    Returns:
        List of results in the same order as ``factories``.
    """
    if limit < 1:
        msg = f"limit must be >= 1, got {limit}"
        raise ValueError(msg)

    semaphore = asyncio.Semaphore(limit)

    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    async with asyncio.TaskGroup() as group:
        tasks = [group.create_task(_run(factory)) for factory in factories]
    return [task.result() for task in tasks]


@asynccontextmanager
async def step_timeout(operation: str, seconds: float | None) -> AsyncIterator[None]:
    """Bound a step's duration, raising :class:`OperationTimeoutError` on expiry.

    ``None`` disables the bound.
    """
    try:
        async with asyncio.timeout(seconds):
            yield
    except TimeoutError as exc:
        raise OperationTimeoutError(operation, seconds or 0.0) from exc
