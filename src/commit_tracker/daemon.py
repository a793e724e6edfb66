import asyncio
import atexit
import contextlib
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console

from .cache import normalize_path
from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE, REGISTRY_FILE
from .errors import ConfigurationError
from .status import StatusIndicator
from .system import get_registered_repos, get_system, unregister_repo
from .tracker import CommitTracker

SYSTEM = get_system()

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

err_console = Console(stderr=True)


def setup_logging(interactive: bool, config: Config | None = None) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout only. If False, logs to stderr
                            and, when enabled, to a rotating file.
        config (Config | None, optional): Supplies the file logging switch and
                                          rotation size. Defaults to Config().
    """
    config = config or Config()
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to a stream (stderr is captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive and config.daemon.enable_file_logging:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def prune_registry(repo_path: Path, registry: Path = REGISTRY_FILE) -> None:
    """Removes a missing repository from the registry and tells the user."""
    try:
        if unregister_repo(repo_path, registry):
            logger.info(f"PRUNED: {repo_path} removed from registry.")
            SYSTEM.notify("Commit Tracking Stopped", f"Removed missing repo: {repo_path.name}")
    except OSError as e:
        logger.error(f"ERROR: Could not prune registry. {e}")


class HeadWatcher:
    """Polls registered repositories and reports HEAD changes to the tracker.

    Attributes:
        tracker (CommitTracker): Receives a HeadEvent for every observed change.
        registry (Path): The registry file listing watched repositories.
    """

    def __init__(self, tracker: CommitTracker, registry: Path = REGISTRY_FILE):
        self.tracker = tracker
        self.registry = registry
        self._seen: dict[str, str] = {}

    async def poll_once(self) -> int:
        """Checks every registered repository once.

        Returns:
            int: The number of events submitted.
        """
        submitted = 0
        for path in get_registered_repos(self.registry):
            if not path.exists():
                prune_registry(path, self.registry)
                continue

            try:
                event = await self.tracker.current_event(path)
            except Exception:
                logger.exception(f"LOOP ERROR {path}")
                continue

            # None: HEAD unreadable, already reported by the tracker.
            if event is None or event.head_commit is None:
                continue
            key = normalize_path(path)
            if self._seen.get(key) == event.head_commit:
                continue
            self._seen[key] = event.head_commit
            self.tracker.submit(event)
            submitted += 1
        return submitted


async def serve(
    config: Config,
    registry: Path = REGISTRY_FILE,
    stop: asyncio.Event | None = None,
    tracker: CommitTracker | None = None,
) -> None:
    """Runs the tracker until SIGINT/SIGTERM or until ``stop`` is set.

    Args:
        config (Config): The loaded configuration.
        registry (Path, optional): The registry of watched repositories.
        stop (asyncio.Event | None, optional): Externally controlled shutdown flag.
        tracker (CommitTracker | None, optional): A pre-built tracker.

    Raises:
        ConfigurationError: If the tracker cannot start.
    """
    tracker = tracker or CommitTracker(config)
    indicator = StatusIndicator(tracker.bus)
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    await tracker.start()
    watcher = HeadWatcher(tracker, registry)
    refresh_every = config.daemon.update_frequency_minutes * 60
    next_refresh = loop.time()

    try:
        while not stop.is_set():
            await watcher.poll_once()

            if loop.time() >= next_refresh:
                await tracker.refresh_unpushed()
                next_refresh = loop.time() + refresh_every
                logger.debug(f"STATUS {indicator.text}")

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=config.daemon.poll_interval)
    finally:
        await tracker.stop()
        indicator.close()
        logger.info("Commit tracking stopped.")


def main() -> None:
    """Daemon entry point: loads config, writes the PID file and serves."""
    config = Config.load()
    setup_logging(False, config)

    if not config.daemon.enabled:
        logger.info("Daemon disabled in config ([daemon] enabled = false). Exiting.")
        return

    # PID File Management.
    try:
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")

    try:
        asyncio.run(serve(config))
    except ConfigurationError as e:
        err_console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
