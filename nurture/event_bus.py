"""Synchronous publish/subscribe bus for typed event messages.

Handlers are keyed by event class.  ``publish`` dispatches on the caller's
stack, in subscription order, to a snapshot of the subscriber list taken
before the first handler runs.
"""

import logging
from typing import Any, Callable, Dict, List, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[Any], None]


class EventBus:
    """Type-keyed event channel.

    A handler that subscribes or unsubscribes while an event is being
    dispatched changes the list for the *next* publish only; the event in
    flight is delivered to exactly the handlers present when it was
    published.
    """

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = {}

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        if handler is None:
            return
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        if handler is None:
            return
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Any) -> None:
        handlers = self._handlers.get(type(event))
        if not handlers:
            return
        for handler in list(handlers):
            handler(event)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("EventBus cleared")
