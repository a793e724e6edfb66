import contextlib
import logging
import os
import subprocess
import sys
from pathlib import Path

from .constants import APP_NAME, REGISTRY_FILE

logger = logging.getLogger(APP_NAME)


def get_registered_repos(registry: Path = REGISTRY_FILE) -> list[Path]:
    """Reads the registry file and returns the watched repository paths."""
    if not registry.exists():
        return []
    with open(registry, "r") as f:
        return list(dict.fromkeys(Path(line.strip()) for line in f if line.strip()))


def register_repo(repo_path: Path, registry: Path = REGISTRY_FILE) -> bool:
    """Adds a repository to the registry.

    Args:
        repo_path (Path): The repository root to watch.
        registry (Path, optional): Path to the registry file. Defaults to REGISTRY_FILE.

    Returns:
        bool: True if the path was added, False if it was already registered.
    """
    target = Path(repo_path).expanduser().resolve()
    if target in get_registered_repos(registry):
        return False

    registry.parent.mkdir(parents=True, exist_ok=True)
    with open(registry, "a") as f:
        f.write(f"{target}\n")
    logger.info(f"REGISTERED: {target}")
    return True


def unregister_repo(repo_path: Path | str, registry: Path = REGISTRY_FILE) -> bool:
    """Removes a repository from the registry with an atomic rewrite.

    Args:
        repo_path (Path | str): The path to remove, as it appears in the registry.
        registry (Path, optional): Path to the registry file. Defaults to REGISTRY_FILE.

    Returns:
        bool: True if the path was present and removed.

    Raises:
        OSError: If the registry cannot be rewritten.
    """
    current = get_registered_repos(registry)
    target = Path(str(repo_path).strip())
    if target not in current:
        return False

    tmp_file = registry.with_suffix(".tmp")
    try:
        # 1. Write the remaining lines to a temp file.
        with open(tmp_file, "w") as f:
            for path in current:
                if path != target:
                    f.write(f"{path}\n")
            f.flush()
            os.fsync(f.fileno())  # Force write to disk.

        # 2. Atomic Swap.
        os.replace(tmp_file, registry)
    except OSError:
        if tmp_file.exists():
            with contextlib.suppress(OSError):
                tmp_file.unlink()
        raise

    logger.info(f"UNREGISTERED: {target} removed from registry.")
    return True


class SystemStrategy:
    """Base class defining the interface for desktop-level interactions."""

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        clean_title = title.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{clean_title}"'
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError:
            pass


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(["notify-send", title, message], stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            pass


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()
