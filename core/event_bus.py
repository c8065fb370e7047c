"""Simple in-process event bus for lifecycle notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

EventHandler = Callable[[dict[str, Any]], None]

EXPERIMENT_CREATED = "experiment:created"
EXPERIMENT_STARTED = "experiment:started"
EXPERIMENT_COMPLETED = "experiment:completed"
MEMORY_CREATED = "memory:created"
MEMORIES_GRADUATED = "memories:graduated"
EXPERIMENTS_PURGED = "experiments:purged"

logger = logging.getLogger("esm.events")


class EventBus:
    """Dispatches events to subscribers by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a callback for an event."""
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Emit an event to all subscribers.

        A failing subscriber is logged and does not undo the committed write
        that produced the event.
        """
        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", event_name)
