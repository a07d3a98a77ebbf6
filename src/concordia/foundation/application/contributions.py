"""Lifespan contributions and their composition.

Infrastructure packages declare a :class:`LifespanContribution` describing
how to start and stop their resources. The host process (a worker, the
scheduler, a test harness) composes them into a single async context
manager. Composition is framework-agnostic: the ``app`` handed to each hook
is whatever object the host uses to carry shared state.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable
    from contextlib import AbstractAsyncContextManager

logger = logging.getLogger(__name__)

# Recommended lifespan priority constants
LIFESPAN_PRIORITY_OBSERVABILITY = 50
LIFESPAN_PRIORITY_PERSISTENCE = 75
LIFESPAN_PRIORITY_ENGINE = 100
LIFESPAN_PRIORITY_TASKIQ = 150


@dataclass(frozen=True, slots=True)
class LifespanContribution:
    """Describes a lifespan hook.

    Attributes:
        hook: An async context manager factory ``(app) -> AsyncContextManager[None]``.
        priority: Ordering priority. Lower priorities start first (and shut down last).
    """

    hook: Callable[[Any], AbstractAsyncContextManager[None]]
    priority: int = 500


def compose_lifespan(
    hooks: Iterable[LifespanContribution],
) -> Callable[[Any], AbstractAsyncContextManager[None]]:
    """Create a composite lifespan from ordered :class:`LifespanContribution` hooks.

    Hooks are sorted by priority (ascending). Lower priority hooks start first
    and shut down last (stack semantics via :class:`AsyncExitStack`).

    Args:
        hooks: LifespanContribution instances.

    Returns:
        An async context manager factory taking the host ``app`` object.
    """
    sorted_hooks = sorted(hooks, key=lambda h: h.priority)

    @asynccontextmanager
    async def lifespan(app: Any) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for hook_contrib in sorted_hooks:
                logger.info(
                    "Entering lifespan hook (priority=%d): %r",
                    hook_contrib.priority,
                    hook_contrib.hook,
                )
                await stack.enter_async_context(hook_contrib.hook(app))
            yield

    return lifespan
