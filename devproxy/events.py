"""Synchronous in-process lifecycle notifications."""

import logging
from collections.abc import Callable

from .models import ProxyEvent

logger = logging.getLogger("devproxy.events")

Listener = Callable[[ProxyEvent], None]


class LifecycleEventBus:
    """
    Publish/subscribe with at-most-once delivery.

    Listeners are called in subscription order, inside publish(). Nothing is
    queued or replayed: a listener subscribed after an event misses it.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: ProxyEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event.type)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
