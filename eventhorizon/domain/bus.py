"""Synchronous in-process bus for calendar lifecycle events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel], None]


class EventBus:
    """Deliver each published event to the handlers subscribed to its type.

    Handlers run on the publishing thread, in registration order. Writes for
    different owners publish concurrently, so the handler table is guarded
    and each publish works on a snapshot of it.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[BaseModel], list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[BaseModel], handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def publish(self, event: BaseModel) -> int:
        """Run the handlers for *event*; returns how many were called."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            handler(event)
        return len(handlers)
