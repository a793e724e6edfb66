from collections.abc import Callable
from enum import Enum
from typing import Any

from .classifier import ErrorDetails
from .events import EventBus, TrackerEvent
from .models import PushAttemptResult


class TrackerState(Enum):
    TRACKING = "tracking"
    PROCESSING = "processing"
    UNPUSHED = "unpushed"
    ERROR = "error"
    STOPPED = "stopped"


_ICONS = {
    TrackerState.TRACKING: "🟢",
    TrackerState.PROCESSING: "🔄",
    TrackerState.UNPUSHED: "🟡",
    TrackerState.ERROR: "🔴",
    TrackerState.STOPPED: "⚪",
}


class StatusIndicator:
    """Folds tracker events into a single displayable state.

    Attributes:
        state (TrackerState): The current state.
        unpushed (int): Commits in the tracking repository not yet on the remote.
        last_error (ErrorDetails | None): The most recent unresolved error.
    """

    def __init__(self, bus: EventBus):
        self.state = TrackerState.STOPPED
        self.unpushed = 0
        self.last_error: ErrorDetails | None = None
        self._unsubscribe: Callable[[], None] = bus.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    def _settled(self) -> TrackerState:
        if self.last_error is not None:
            return TrackerState.ERROR
        return TrackerState.UNPUSHED if self.unpushed > 0 else TrackerState.TRACKING

    def _on_event(self, event: TrackerEvent, payload: Any) -> None:
        if event is TrackerEvent.TRACKING_STOPPED:
            self.state = TrackerState.STOPPED
            return
        if self.state is TrackerState.STOPPED and event is not TrackerEvent.TRACKING_STARTED:
            return

        if event is TrackerEvent.COMMIT_DETECTED:
            self.state = TrackerState.PROCESSING
        elif event is TrackerEvent.ERROR_OCCURRED:
            self.last_error = payload
            self.state = TrackerState.ERROR
        elif event is TrackerEvent.ERROR_RESOLVED:
            self.last_error = None
            self.state = self._settled()
        elif event is TrackerEvent.UNPUSHED_CHANGED:
            self.unpushed = int(payload)
            if self.state is not TrackerState.PROCESSING:
                self.state = self._settled()
        elif event is TrackerEvent.PUSH_COMPLETED:
            result: PushAttemptResult = payload
            if result.pushed:
                self.unpushed = 0
                self.last_error = None
            elif result.committed:
                self.unpushed += 1
            self.state = self._settled()
        else:
            # STARTED, PROCESSED, SKIPPED, FAILED
            if self.state is not TrackerState.ERROR:
                self.state = self._settled()

    @property
    def text(self) -> str:
        """A one-line summary suitable for a status bar."""
        icon = _ICONS[self.state]
        if self.state is TrackerState.ERROR and self.last_error is not None:
            return f"{icon} {self.last_error.title}: {self.last_error.message}"
        if self.state is TrackerState.UNPUSHED:
            noun = "commit" if self.unpushed == 1 else "commits"
            return f"{icon} {self.unpushed} unpushed {noun}"
        return f"{icon} {self.state.value.capitalize()}"
