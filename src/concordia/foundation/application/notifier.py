"""In-process change notifications.

Components that keep derived data (cached ratings, read models) subscribe
to a topic; the component that mutates the source data publishes to it.
Subscribers are registered explicitly at wiring time. Nothing is looked
up through module globals.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ChangeTopic(StrEnum):
    """Topics published by the account workflows."""

    USER_REGISTERED = "user_registered"
    PROFILE_UPDATED = "profile_updated"
    USER_DELETED = "user_deleted"
    REVIEWS_CHANGED = "reviews_changed"


class ChangeNotifier:
    """Fan a published change out to registered async subscribers.

    A failing subscriber is logged and skipped. The publisher's write has
    already happened and derived data is re-derivable, so a subscriber
    failure must not turn a successful write into an error.

    Example:
        >>> notifier = ChangeNotifier()
        >>> notifier.subscribe(ChangeTopic.REVIEWS_CHANGED, aggregator.on_reviews_changed)
        >>> await notifier.publish(ChangeTopic.REVIEWS_CHANGED, user_id="uid-1")
    """

    def __init__(self) -> None:
        self._subscribers: dict[ChangeTopic, list[Callable[..., Awaitable[None]]]] = (
            defaultdict(list)
        )

    def subscribe(
        self,
        topic: ChangeTopic,
        callback: Callable[..., Awaitable[None]],
    ) -> None:
        self._subscribers[topic].append(callback)

    def unsubscribe(
        self,
        topic: ChangeTopic,
        callback: Callable[..., Awaitable[None]],
    ) -> None:
        if callback in self._subscribers[topic]:
            self._subscribers[topic].remove(callback)

    def subscribers(self, topic: ChangeTopic) -> list[Callable[..., Awaitable[None]]]:
        return list(self._subscribers[topic])

    async def publish(self, topic: ChangeTopic, **payload: Any) -> int:
        """Invoke every subscriber of ``topic`` in registration order.

        Returns:
            Number of subscribers that completed without raising.
        """
        delivered = 0
        for callback in self.subscribers(topic):
            try:
                await callback(**payload)
            except Exception:
                logger.exception(
                    "change_subscriber_failed",
                    extra={"topic": topic.value, "subscriber": repr(callback)},
                )
            else:
                delivered += 1
        return delivered
