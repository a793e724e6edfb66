"""The commit tracking pipeline.

Wires the detector, git wrapper, appender and reconciler together:

    HeadEvent -> ChangeDetector -> commit lookup -> LogAppender
              -> cursor update -> PushReconciler

Failures at any stage are classified and published; nothing partial is ever
written to the tracking file.
"""

import asyncio
import logging
from pathlib import Path

from .appender import LogAppender
from .cache import ResultCache, normalize_path
from .classifier import ErrorClassifier, ErrorKind, Stage
from .config import Config
from .constants import APP_NAME
from .cursor import CursorStore
from .detector import ChangeDetector, SkipReason
from .errors import ConfigurationError, GitError, RepositoryError, TrackingFileError
from .events import EventBus, TrackerEvent
from .git_wrapper import GitExecutor, GitRepo
from .models import CommitRecord, HeadEvent, PushAttemptResult
from .reconciler import PushReconciler

logger = logging.getLogger(APP_NAME)


class CommitTracker:
    """Mirrors commits from watched repositories into the tracking repository.

    Attributes:
        config (Config): Validated settings.
        executor (GitExecutor): Shared git process runner.
        cache (ResultCache): Shared query cache.
        cursor (CursorStore): Last processed commit per watched repository.
        bus (EventBus): Receives tracker and error events.
        classifier (ErrorClassifier): Classifies and reports failures.
        tracking (GitRepo): The tracking repository.
        appender (LogAppender): Writes records under the tracking repository.
        reconciler (PushReconciler): Commits and pushes the tracking repository.
        detector (ChangeDetector): Debounces and filters HEAD events.
    """

    def __init__(
        self,
        config: Config,
        executor: GitExecutor | None = None,
        cache: ResultCache | None = None,
        cursor: CursorStore | None = None,
        bus: EventBus | None = None,
        classifier: ErrorClassifier | None = None,
    ):
        self.config = config
        self.executor = executor or GitExecutor()
        self.cache = cache or ResultCache()
        self.cursor = cursor or CursorStore()
        self.bus = bus or EventBus()
        self.classifier = classifier or ErrorClassifier(
            self.bus, notifications_enabled=config.daemon.show_notifications
        )

        self.tracking = GitRepo(config.tracking_repo, self.executor, self.cache)
        self.appender = LogAppender(config.tracking_repo)
        self.reconciler = PushReconciler(
            self.tracking, self.classifier, config.tracking.remote_name
        )
        self.detector = ChangeDetector(
            self.cursor,
            self.process,
            excluded_branches=config.tracking.excluded_branches,
            quiet_window=config.debounce_seconds,
            on_skip=self._on_skip,
        )

        self._repos: dict[str, GitRepo] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._cancel = asyncio.Event()
        self._push_error: ErrorKind | None = None
        self._lookup_errors: dict[str, ErrorKind] = {}

    def repo(self, path: Path | str) -> GitRepo:
        """Returns the shared GitRepo view for a watched repository."""
        key = normalize_path(path)
        if key not in self._repos:
            self._repos[key] = GitRepo(Path(key), self.executor, self.cache)
        return self._repos[key]

    def _lock_for(self, path: Path | str) -> asyncio.Lock:
        key = normalize_path(path)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _on_skip(self, event: HeadEvent, reason: SkipReason) -> None:
        self.bus.publish(TrackerEvent.COMMIT_SKIPPED, (event, reason.value))

    # --- Lifecycle ---

    async def start(self, sync: bool = True) -> None:
        """Validates configuration and optionally pulls the tracking repository.

        Args:
            sync (bool, optional): Pull from the remote before tracking. Defaults to True.

        Raises:
            ConfigurationError: If the settings are unusable.
            RepositoryError: If the tracking path is not a git repository.
        """
        try:
            self.config.validate()
            if not self.tracking.is_git_repo():
                raise RepositoryError(
                    f"Tracking repository is not a git repository: {self.tracking.path}"
                )
        except ConfigurationError as e:
            self.classifier.report(e, Stage.CONFIGURATION)
            raise

        if sync:
            await self.sync_tracking_repo()

        logger.info(f"Tracking commits into {self.config.tracking_file}")
        self.bus.publish(TrackerEvent.TRACKING_STARTED, self.config.tracking_file)

    async def sync_tracking_repo(self) -> bool:
        """Fast-forwards the tracking repository from its remote.

        Returns:
            bool: True if the pull succeeded or there is no remote to pull from.
        """
        async with self._lock_for(self.tracking.path):
            try:
                if not await self.tracking.has_remote(self.config.tracking.remote_name):
                    return True
            except GitError as e:
                self.classifier.report(e, Stage.PULL)
                return False

            result = await self.tracking.pull("--ff-only")
            if not result.ok:
                self.classifier.report(result.error, Stage.PULL)
                return False

        logger.info(f"SYNCED {self.tracking.path.name}: pulled latest tracking history.")
        return True

    async def stop(self) -> None:
        """Stops accepting events. An in-flight push step is allowed to finish."""
        self._cancel.set()
        await self.detector.close()
        self.bus.publish(TrackerEvent.TRACKING_STOPPED)

    # --- Event intake ---

    def submit(self, event: HeadEvent) -> None:
        """Hands a raw HEAD notification to the detector (debounced)."""
        if not self.config.daemon.enabled:
            return
        self.detector.submit(event)

    async def current_event(self, repo_path: Path) -> HeadEvent | None:
        """Builds a HeadEvent from a repository's current HEAD and branch.

        A repository whose HEAD cannot be read is reported once per outage and
        publishes COMMIT_FAILED on every attempt.

        Args:
            repo_path (Path): The watched repository.

        Returns:
            HeadEvent | None: The event, or None if HEAD could not be read.
        """
        repo = self.repo(repo_path)
        key = normalize_path(repo.path)
        try:
            head = await repo.head_commit()
        except GitError as e:
            if key not in self._lookup_errors:
                self._lookup_errors[key] = self.classifier.report(e, Stage.LOOKUP).kind
            self.bus.publish(TrackerEvent.COMMIT_FAILED, (HeadEvent(None, None, repo.path), e))
            return None

        if key in self._lookup_errors:
            self.classifier.resolve(self._lookup_errors.pop(key), Stage.LOOKUP)

        try:
            handle = await repo.handle()
        except GitError as e:
            logger.debug(f"Branch unavailable for {repo.path.name}: {e}")
            return HeadEvent(head, None, repo.path)
        return HeadEvent(head, handle.current_branch or None, handle.path)

    async def log_now(self, repo_path: Path) -> None:
        """Processes a repository's current HEAD immediately, without debounce."""
        event = await self.current_event(repo_path)
        if event is not None:
            await self.detector.submit_now(event)

    async def push_now(self) -> PushAttemptResult:
        """Commits any pending tracking changes and runs the push ladder."""
        async with self._lock_for(self.tracking.path):
            result = await self.reconciler.run(
                self.config.tracking.log_file, "Sync commit tracking log", self._cancel
            )
        self._push_finished(result)
        return result

    async def refresh_unpushed(self) -> int | None:
        """Re-counts unpushed tracking commits and publishes the result.

        Returns:
            int | None: The count, or None if it could not be determined.
        """
        try:
            count = await self.tracking.unpushed_count()
        except GitError as e:
            self.classifier.report(e, Stage.STATUS)
            return None
        self.bus.publish(TrackerEvent.UNPUSHED_CHANGED, count)
        return count

    def _push_finished(self, result: PushAttemptResult) -> None:
        if result.pushed and self._push_error is not None:
            self.classifier.resolve(self._push_error, Stage.PUSH)
            self._push_error = None
        elif result.error_kind is not None:
            self._push_error = result.error_kind
        self.bus.publish(TrackerEvent.PUSH_COMPLETED, result)

    # --- Pipeline ---

    async def _build_record(self, event: HeadEvent) -> CommitRecord | None:
        repo = self.repo(event.repo_path)
        commit = event.head_commit or ""
        try:
            message = await repo.commit_message(commit)
            author = await repo.commit_author(commit)
            branch = event.branch or await repo.current_branch() or "HEAD"
        except GitError as e:
            # No record is written with partial data.
            self.classifier.report(e, Stage.LOOKUP)
            self.bus.publish(TrackerEvent.COMMIT_FAILED, (event, e))
            return None

        allowed = self.config.tracking.allowed_authors
        if allowed and author not in allowed:
            logger.info(f"SKIPPED {repo.path.name}: author '{author}' not allowed.")
            self.cursor.set(event.repo_path, commit)
            self.bus.publish(TrackerEvent.COMMIT_SKIPPED, (event, "author-not-allowed"))
            return None

        return CommitRecord(
            commit_id=commit,
            message=message,
            author=author,
            branch=branch,
            repo_path=str(repo.path),
            repo_name=await repo.repo_name(),
        )

    async def process(self, event: HeadEvent) -> PushAttemptResult | None:
        """Logs and synchronizes one accepted commit event.

        Args:
            event (HeadEvent): An event that passed the detector's filters.

        Returns:
            PushAttemptResult | None: The reconciler outcome, or None when the
                                      commit was skipped or could not be logged.
        """
        self.bus.publish(TrackerEvent.COMMIT_DETECTED, event)

        record = await self._build_record(event)
        if record is None:
            return None

        tracking_file = self.config.tracking_file
        async with self._lock_for(self.tracking.path):
            try:
                if await asyncio.to_thread(
                    self.appender.contains, tracking_file, record.commit_id
                ):
                    logger.info(f"SKIPPED {record.repo_name}: {record.commit_id[:8]} already logged.")
                    self.cursor.set(event.repo_path, record.commit_id)
                    self.bus.publish(TrackerEvent.COMMIT_SKIPPED, (event, "already-logged"))
                    return None
                await asyncio.to_thread(self.appender.append, tracking_file, record)
            except TrackingFileError as e:
                self.classifier.report(e, Stage.APPEND)
                self.bus.publish(TrackerEvent.COMMIT_FAILED, (event, e))
                return None

            # Durably appended: from here a failure never re-processes this commit.
            try:
                self.cursor.set(event.repo_path, record.commit_id)
            except OSError as e:
                self.classifier.report(e, Stage.CURSOR)
            self.bus.publish(TrackerEvent.COMMIT_PROCESSED, record)

            result = await self.reconciler.run(
                self.config.tracking.log_file,
                f"Track {record.repo_name} {record.commit_id[:8]} ({record.branch})",
                self._cancel,
            )

        self._push_finished(result)
        return result
