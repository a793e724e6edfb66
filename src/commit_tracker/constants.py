import os
from pathlib import Path

"""Global constants and path definitions for Commit Tracker.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, git invocation limits and cache lifetimes used across the
application.
"""

# --- Identity ---
APP_NAME = "commit-tracker"
"""str: The human-readable application name."""

DEFAULT_REMOTE = "origin"
"""str: The remote the tracking repository is pushed to."""

DEFAULT_LOG_FILE = "commit-tracker.log"
"""str: The default tracking file name inside the tracking repository."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "commit-tracker"
"""Path: The directory for runtime state data (logs, registry, cursor)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

REGISTRY_FILE = STATE_DIR / "registry"
"""Path: The file path storing the list of watched repositories."""

CURSOR_FILE = STATE_DIR / "cursor.json"
"""Path: The file path storing the last processed commit per repository."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/commit-tracker"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Git invocation ---
DEFAULT_GIT_TIMEOUT = 10.0
"""float: Seconds allowed for local git commands."""

NETWORK_GIT_TIMEOUT = 60.0
"""float: Seconds allowed for commands that talk to a remote (push, pull)."""

NETWORK_SUBCOMMANDS = frozenset({"push", "pull"})
"""frozenset[str]: Arguments that mark an invocation as network-bound."""

GIT_ENV_OVERRIDES = {"GIT_TERMINAL_PROMPT": "0"}
"""dict[str, str]: Environment forced onto every git invocation."""

# --- Cache lifetimes (seconds) ---
TTL_COMMIT_DETAILS = 24 * 3600
TTL_REMOTE = 30 * 60
TTL_BRANCH = 5
TTL_UNPUSHED = 30
TTL_STATUS = 5

# --- Change detection ---
DEBOUNCE_SECONDS = 0.3
"""float: Quiet window used to coalesce bursts of HEAD notifications."""

DEFAULT_POLL_INTERVAL = 5
"""int: Seconds between HEAD polls of each watched repository."""
