import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEBOUNCE_SECONDS,
    DEFAULT_LOG_FILE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REMOTE,
)
from .errors import ConfigurationError

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def parse_string_list(value: Any) -> list[str]:
    """Accepts a list of strings or a single comma-separated string."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(dict.fromkeys(value))
    raise ValueError(f"Expected a list of strings, got {value!r}")


@dataclass
class TrackingConfig:
    """Where and what to record.

    Attributes:
        repo_path (str): The tracking repository (required).
        log_file (str): The tracking file name, relative to repo_path.
        excluded_branches (list[str]): Branches whose commits are never logged.
        allowed_authors (list[str]): If non-empty, only these authors are logged.
        remote_name (str): The remote the tracking repository pushes to.
    """

    repo_path: str = ""
    log_file: str = DEFAULT_LOG_FILE
    excluded_branches: list[str] = field(default_factory=list)
    allowed_authors: list[str] = field(default_factory=list)
    remote_name: str = DEFAULT_REMOTE


@dataclass
class DaemonConfig:
    """Daemon operational settings.

    Attributes:
        enabled (bool): Whether the daemon processes commits at all.
        enable_file_logging (bool): Whether to also log to the rotating log file.
        update_frequency_minutes (int): Minutes between unpushed-status refreshes.
        poll_interval (int): Seconds between HEAD polls of watched repositories.
        debounce_ms (int): Quiet window for coalescing HEAD events.
        show_notifications (bool): Whether to raise desktop notifications.
    """

    enabled: bool = True
    enable_file_logging: bool = True
    update_frequency_minutes: int = 5
    poll_interval: int = DEFAULT_POLL_INTERVAL
    debounce_ms: int = int(DEBOUNCE_SECONDS * 1000)
    show_notifications: bool = True


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the daemon log before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        tracking (TrackingConfig): Tracking repository settings.
        daemon (DaemonConfig): Daemon behavior settings.
        limits (LimitsConfig): Resource limits.
    """

    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults merged with the TOML config file.

        Args:
            path (Path | None): The config file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The merged configuration object. Not yet validated.
        """
        instance = cls()
        config_file = path if path is not None else CONFIG_FILE
        if config_file.exists():
            instance._merge_from_file(config_file)
        return instance

    @property
    def tracking_repo(self) -> Path:
        return Path(self.tracking.repo_path).expanduser()

    @property
    def tracking_file(self) -> Path:
        return self.tracking_repo / self.tracking.log_file

    @property
    def debounce_seconds(self) -> float:
        return self.daemon.debounce_ms / 1000

    def validate(self) -> "Config":
        """Checks the settings the pipeline cannot run without.

        Returns:
            Config: self, for chaining.

        Raises:
            ConfigurationError: If the tracking path is missing or relative, or a
                                numeric setting is out of range.
        """
        if not self.tracking.repo_path:
            raise ConfigurationError(
                f"No tracking repository configured. Set [tracking] repo_path in {CONFIG_FILE}."
            )
        if not self.tracking_repo.is_absolute():
            raise ConfigurationError(
                f"Tracking repository path must be absolute: {self.tracking.repo_path}"
            )
        if not self.tracking.log_file or Path(self.tracking.log_file).is_absolute():
            raise ConfigurationError(
                f"Tracking log file must be a relative file name: '{self.tracking.log_file}'"
            )
        if not 1 <= self.daemon.update_frequency_minutes <= 60:
            raise ConfigurationError(
                "update_frequency_minutes must be between 1 and 60, "
                f"got {self.daemon.update_frequency_minutes}"
            )
        if self.daemon.poll_interval < 1:
            raise ConfigurationError(
                f"poll_interval must be at least 1 second, got {self.daemon.poll_interval}"
            )
        return self

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            unknown = set(data) - {"tracking", "daemon", "limits"}
            if unknown:
                logger.warning(
                    f"Unknown config sections in {path.name}: {', '.join(sorted(unknown))}. Ignoring."
                )

            if "tracking" in data:
                self.tracking = self._update_dataclass("tracking", self.tracking, data["tracking"])
            if "daemon" in data:
                self.daemon = self._update_dataclass("daemon", self.daemon, data["daemon"])
            if "limits" in data:
                self.limits = self._update_dataclass("limits", self.limits, data["limits"])

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                # Route specific keys through our parsers
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "poll_interval":
                    filtered_updates[k] = parse_time(v)
                elif k in ["excluded_branches", "allowed_authors"]:
                    filtered_updates[k] = parse_string_list(v)
                elif k in ["update_frequency_minutes", "debounce_ms"]:
                    if isinstance(v, bool) or not isinstance(v, int):
                        raise ValueError(f"Expected an integer, got {v!r}")
                    filtered_updates[k] = v
                elif k in ["enabled", "enable_file_logging", "show_notifications"]:
                    if not isinstance(v, bool):
                        raise ValueError(f"Expected true or false, got {v!r}")
                    filtered_updates[k] = v
                else:
                    if not isinstance(v, str):
                        raise ValueError(f"Expected a string, got {v!r}")
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
