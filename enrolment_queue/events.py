"""In-process event bus.

The queue publishes an event after every committed change; transports (the
WebSocket hub, the MQTT bridge, the webhook notifier) subscribe to it. This
keeps queue logic free of any transport code.

Event names:
- `state:update`   full public snapshot
- `student:update` one student record
- `audit:append`   the audit entry written for the change
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

STATE_UPDATE = "state:update"
STUDENT_UPDATE = "student:update"
AUDIT_APPEND = "audit:append"


@dataclass(frozen=True)
class Event:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[Event], None]


class EventBus:
    """Fan-out of events to subscribers.

    Delivery is best effort: a failing subscriber is logged and skipped, and
    never affects the publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for h in handlers:
            try:
                h(event)
            except Exception:
                logger.exception("event handler failed for %s", event.name)
