"""
Event Bus — observability hooks for runs, games and skip decisions.

Behavioral Contract:
- Handlers are called synchronously, in subscription order.
- A failing handler is logged and never breaks the emitter.
- Delivery is best effort: the kernel does not depend on anyone listening.
"""

import logging
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"
    ITEM_BLACKLISTED = "item_blacklisted"
    GAME_FINISHED = "game_finished"
    PRIORITY_CHANGED = "priority_changed"


class EventBus:
    """Thread-safe publish/subscribe bus keyed by event name."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}
        self._lock = RLock()

    def subscribe(self, event: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(_key(event), [])
            if handler not in handlers:
                handlers.append(handler)
                logger.debug("Subscribed handler %s to event '%s'", handler, _key(event))

    def unsubscribe(self, event: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            handlers = self._handlers.get(_key(event))
            if not handlers:
                return
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                del self._handlers[_key(event)]

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def emit(self, event: str, **payload: Any) -> List[Any]:
        """
        Emit an event with a keyword payload.

        Returns the handlers' return values, skipping handlers that raised.
        """
        name = _key(event)
        with self._lock:
            handlers = list(self._handlers.get(name, []))
        if not handlers:
            return []
        logger.debug("Emitting '%s' to %d handlers", name, len(handlers))
        results: List[Any] = []
        for handler in handlers:
            try:
                results.append(handler(**payload))
            except Exception:
                logger.exception("Error in handler %s for event '%s'", handler, name)
        return results


def _key(event: str) -> str:
    return event.value if isinstance(event, Enum) else event
