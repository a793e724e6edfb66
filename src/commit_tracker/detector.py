"""Debounced, deduplicated handling of HEAD-change notifications.

Each watched repository gets its own channel:

    IDLE -> PENDING_DEBOUNCE -> PROCESSING -> IDLE

Bursts of events inside the quiet window collapse into one evaluation of the
newest event. Evaluation within a repository is serialized: an event that
arrives while another is processing waits, and only the newest waiting event
survives. Separate repositories proceed independently.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .cache import normalize_path
from .constants import APP_NAME, DEBOUNCE_SECONDS
from .cursor import CursorStore
from .models import HeadEvent

logger = logging.getLogger(APP_NAME)


class DetectorState(Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending-debounce"
    PROCESSING = "processing"


class SkipReason(Enum):
    NO_COMMIT = "no-commit"
    ALREADY_PROCESSED = "already-processed"
    EXCLUDED_BRANCH = "excluded-branch"


@dataclass
class _Channel:
    state: DetectorState = DetectorState.IDLE
    pending: HeadEvent | None = None
    timer: asyncio.Task | None = None
    worker: asyncio.Task | None = None
    processed: int = 0
    skipped: dict[SkipReason, int] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


Handler = Callable[[HeadEvent], Awaitable[None]]
SkipHandler = Callable[[HeadEvent, SkipReason], None]


class ChangeDetector:
    """Filters raw HEAD events down to commits that need logging.

    Attributes:
        cursor (CursorStore): Persisted last processed commit per repository.
        on_accept (Handler): Awaited for every event that passes the filters.
        excluded_branches (set[str]): Branches whose commits are never logged.
        quiet_window (float): Debounce window in seconds.
        on_skip (SkipHandler | None): Called for every dropped event.
    """

    def __init__(
        self,
        cursor: CursorStore,
        on_accept: Handler,
        excluded_branches: Iterable[str] = (),
        quiet_window: float = DEBOUNCE_SECONDS,
        on_skip: SkipHandler | None = None,
    ):
        self.cursor = cursor
        self.on_accept = on_accept
        self.excluded_branches = set(excluded_branches)
        self.quiet_window = quiet_window
        self.on_skip = on_skip
        self._channels: dict[str, _Channel] = {}
        self._closed = False

    def _channel(self, repo_path: Path) -> _Channel:
        key = normalize_path(repo_path)
        if key not in self._channels:
            self._channels[key] = _Channel()
        return self._channels[key]

    def state(self, repo_path: Path) -> DetectorState:
        return self._channel(repo_path).state

    def submit(self, event: HeadEvent) -> None:
        """Queues a raw event; must be called from within the running event loop.

        Restarts the quiet window for the event's repository. The newest event
        replaces any event still waiting in the same channel.
        """
        if self._closed:
            logger.debug(f"Detector closed; dropping event for {event.repo_path}")
            return

        channel = self._channel(event.repo_path)
        channel.pending = event
        if channel.timer is not None and not channel.timer.done():
            channel.timer.cancel()
        if channel.state is DetectorState.IDLE:
            channel.state = DetectorState.PENDING_DEBOUNCE
        channel.timer = asyncio.get_running_loop().create_task(self._quiet_then_drain(channel))

    async def submit_now(self, event: HeadEvent) -> None:
        """Evaluates an event immediately, bypassing the debounce but not the filters.

        Waits for any in-progress evaluation of the same repository first.
        """
        channel = self._channel(event.repo_path)
        channel.state = DetectorState.PROCESSING
        try:
            await self._evaluate(event, channel)
        finally:
            if channel.worker is None or channel.worker.done():
                channel.state = (
                    DetectorState.PENDING_DEBOUNCE
                    if channel.pending is not None
                    else DetectorState.IDLE
                )

    async def _quiet_then_drain(self, channel: _Channel) -> None:
        await asyncio.sleep(self.quiet_window)
        if channel.worker is not None and not channel.worker.done():
            # The running worker picks up the pending event when it finishes.
            return
        channel.worker = asyncio.get_running_loop().create_task(self._drain(channel))

    def _quiet_elapsed(self, channel: _Channel) -> bool:
        return channel.timer is None or channel.timer.done()

    async def _drain(self, channel: _Channel) -> None:
        try:
            while channel.pending is not None and self._quiet_elapsed(channel):
                event, channel.pending = channel.pending, None
                channel.state = DetectorState.PROCESSING
                await self._evaluate(event, channel)
        finally:
            channel.state = (
                DetectorState.PENDING_DEBOUNCE if channel.pending is not None else DetectorState.IDLE
            )

    def _skip(self, event: HeadEvent, channel: _Channel, reason: SkipReason) -> None:
        channel.skipped[reason] = channel.skipped.get(reason, 0) + 1
        logger.debug(f"SKIPPED {event.repo_path} @ {event.head_commit}: {reason.value}")
        if self.on_skip is not None:
            self.on_skip(event, reason)

    async def _evaluate(self, event: HeadEvent, channel: _Channel) -> None:
        try:
            async with channel.lock:
                await self._filter_and_accept(event, channel)
        except Exception:
            logger.exception(f"PROCESSING ERROR {event.repo_path} @ {event.head_commit}")

    async def _filter_and_accept(self, event: HeadEvent, channel: _Channel) -> None:
        if not event.head_commit:
            self._skip(event, channel, SkipReason.NO_COMMIT)
            return

        if self.cursor.get(event.repo_path) == event.head_commit:
            self._skip(event, channel, SkipReason.ALREADY_PROCESSED)
            return

        if event.branch in self.excluded_branches:
            # Terminal skip: remember the commit so it is not re-evaluated.
            self.cursor.set(event.repo_path, event.head_commit)
            logger.info(f"SKIPPED {Path(event.repo_path).name}: excluded branch '{event.branch}'.")
            self._skip(event, channel, SkipReason.EXCLUDED_BRANCH)
            return

        await self.on_accept(event)
        channel.processed += 1

    async def wait_idle(self) -> None:
        """Waits until every channel has no pending timer, event or worker."""
        while True:
            tasks = [
                t
                for channel in self._channels.values()
                for t in (channel.timer, channel.worker)
                if t is not None and not t.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stops accepting events and cancels pending debounce timers.

        A worker that is already processing is allowed to finish its current
        event; evaluation is never interrupted mid-flight.
        """
        self._closed = True
        for channel in self._channels.values():
            channel.pending = None
            if channel.timer is not None and not channel.timer.done():
                channel.timer.cancel()
        workers = [c.worker for c in self._channels.values() if c.worker is not None]
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
