"""In-process publish/subscribe for tracker and error events.

Components that want to react to the pipeline (the status indicator, the CLI)
subscribe here instead of polling.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class TrackerEvent(Enum):
    """Event types published on the bus."""

    TRACKING_STARTED = "tracking.started"
    TRACKING_STOPPED = "tracking.stopped"
    COMMIT_DETECTED = "commit.detected"
    COMMIT_PROCESSED = "commit.processed"
    COMMIT_SKIPPED = "commit.skipped"
    COMMIT_FAILED = "commit.failed"
    PUSH_COMPLETED = "push.completed"
    UNPUSHED_CHANGED = "push.unpushed_changed"
    ERROR_OCCURRED = "error.occurred"
    ERROR_RESOLVED = "error.resolved"


Listener = Callable[[TrackerEvent, Any], None]


@dataclass
class EventBus:
    """A synchronous fan-out of events to registered listeners.

    A listener that raises is logged and skipped so one faulty subscriber
    cannot break the pipeline that published the event.
    """

    _listeners: dict[TrackerEvent | None, list[Listener]] = field(
        default_factory=lambda: defaultdict(list)
    )

    def subscribe(
        self, listener: Listener, event: TrackerEvent | None = None
    ) -> Callable[[], None]:
        """Registers a listener for one event type, or for all when None.

        Returns:
            Callable[[], None]: A function that removes the subscription.
        """
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def publish(self, event: TrackerEvent, payload: Any = None) -> None:
        for listener in [*self._listeners[event], *self._listeners[None]]:
            try:
                listener(event, payload)
            except Exception:
                logger.exception(f"Listener failed for {event.value}")

    def clear(self) -> None:
        self._listeners.clear()
