"""
Feed Invalidation Signal - in-process publish/subscribe.

Writers that change what the discovery feed would show (votes, copies,
downgrade conversions) publish after their commit. Subscribers (page caches,
CDN purgers) decide what to drop. Nothing is cached here.
"""

import inspect
from collections.abc import Awaitable, Callable
from uuid import UUID

from structlog import get_logger

from app.observability.metrics import metrics

logger = get_logger(__name__)

DISCOVERY_PATH = "/discovery"

Subscriber = Callable[[str, UUID | None], Awaitable[None] | None]


class FeedInvalidationBus:
    """Fan-out of feed invalidation signals to registered subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        """Register a callback receiving (reason, list_id)."""
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, reason: str, list_id: UUID | None = None) -> None:
        """
        Notify every subscriber that the discovery feed is stale.

        Subscriber failures are logged and do not affect the caller: the
        write that triggered the signal has already committed.
        """
        metrics.feed_invalidations_total.labels(reason=reason).inc()
        logger.debug(
            "feed_invalidated",
            path=DISCOVERY_PATH,
            reason=reason,
            list_id=str(list_id) if list_id else None,
        )

        for subscriber in list(self._subscribers):
            try:
                result = subscriber(reason, list_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "feed_invalidation_subscriber_failed",
                    reason=reason,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )


# Global bus instance
feed_invalidation = FeedInvalidationBus()
