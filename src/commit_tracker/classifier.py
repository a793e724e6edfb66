"""Maps pipeline failures onto a closed taxonomy and reports them.

Classification is a pure function of the raised error and the stage at which it
occurred. Reporting logs the result, publishes it on the event bus, and raises a
desktop notification for the kinds that need the user to act.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from .constants import APP_NAME
from .errors import (
    ConfigurationError,
    GitError,
    GitErrorKind,
    RepositoryError,
    TrackingFileError,
)
from .events import EventBus, TrackerEvent
from .system import SystemStrategy, get_system

logger = logging.getLogger(APP_NAME)


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    GIT_OPERATION = "git-operation"
    FILESYSTEM = "filesystem"
    REPOSITORY = "repository"
    NETWORK = "network"
    UNKNOWN = "unknown"


class Stage(Enum):
    """Where in the pipeline an error was raised."""

    CONFIGURATION = "loading configuration"
    LOOKUP = "reading commit details"
    APPEND = "writing tracking file"
    CURSOR = "saving commit cursor"
    STAGE = "staging tracking file"
    COMMIT = "committing tracking repository"
    PUSH = "pushing tracking repository"
    PULL = "pulling tracking repository"
    STATUS = "checking repository status"


SUGGESTIONS: dict[ErrorKind, tuple[str, ...]] = {
    ErrorKind.CONFIGURATION: ("Open Settings", "Run Setup Wizard"),
    ErrorKind.GIT_OPERATION: ("Check Git Installation", "Open Terminal"),
    ErrorKind.FILESYSTEM: ("Check Permissions", "Select New Location"),
    ErrorKind.REPOSITORY: ("Refresh Status",),
    ErrorKind.NETWORK: ("Check Network Connection", "Push Manually"),
    ErrorKind.UNKNOWN: (),
}
"""dict[ErrorKind, tuple[str, ...]]: Remediation actions offered per kind."""

USER_FACING_KINDS = frozenset({ErrorKind.CONFIGURATION, ErrorKind.FILESYSTEM})
"""frozenset[ErrorKind]: Kinds that interrupt the user rather than the status bar."""

_TITLES = {
    ErrorKind.CONFIGURATION: "Configuration error",
    ErrorKind.GIT_OPERATION: "Git error",
    ErrorKind.FILESYSTEM: "File system error",
    ErrorKind.REPOSITORY: "Repository error",
    ErrorKind.NETWORK: "Network error",
    ErrorKind.UNKNOWN: "Error",
}

_NETWORK_STAGES = frozenset({Stage.PUSH, Stage.PULL})

_REPOSITORY_PATTERNS = re.compile(
    r"not a git repository|does not appear to be a git repository|"
    r"no such remote|no configured push destination",
    re.IGNORECASE,
)
_NETWORK_PATTERNS = re.compile(
    r"could not resolve host|unable to access|could not read from remote|"
    r"connection (refused|reset|timed out)|network is unreachable|"
    r"operation timed out",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ErrorDetails:
    """A classified failure ready for logging and display.

    Attributes:
        kind (ErrorKind): The taxonomy bucket.
        message (str): The underlying error message.
        operation (str): Human description of the failing stage.
        suggestions (tuple[str, ...]): Actions to offer the user.
        error (BaseException | None): The original exception.
    """

    kind: ErrorKind
    message: str
    operation: str
    suggestions: tuple[str, ...] = ()
    error: BaseException | None = None

    @property
    def title(self) -> str:
        return _TITLES[self.kind]


def _classify_git_error(error: GitError, stage: Stage) -> ErrorKind:
    if error.kind is GitErrorKind.TIMEOUT:
        return ErrorKind.NETWORK if stage in _NETWORK_STAGES else ErrorKind.GIT_OPERATION
    if error.kind is GitErrorKind.PATH_NOT_FOUND:
        return ErrorKind.REPOSITORY
    if error.kind is GitErrorKind.GIT_NOT_FOUND:
        return ErrorKind.GIT_OPERATION

    # NON_ZERO_EXIT: refine using what git printed.
    if _REPOSITORY_PATTERNS.search(error.stderr):
        return ErrorKind.REPOSITORY
    if stage in _NETWORK_STAGES and _NETWORK_PATTERNS.search(error.stderr):
        return ErrorKind.NETWORK
    return ErrorKind.GIT_OPERATION


def classify_kind(error: BaseException, stage: Stage) -> ErrorKind:
    """Determines the taxonomy bucket for an error raised at a given stage."""
    if isinstance(error, RepositoryError):
        return ErrorKind.REPOSITORY
    if isinstance(error, ConfigurationError):
        return ErrorKind.CONFIGURATION
    if isinstance(error, GitError):
        return _classify_git_error(error, stage)
    if isinstance(error, (TrackingFileError, OSError)):
        return ErrorKind.FILESYSTEM
    if isinstance(error, TimeoutError) and stage in _NETWORK_STAGES:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


class ErrorClassifier:
    """Classifies, logs and publishes pipeline errors.

    Attributes:
        bus (EventBus): Receives an ERROR_OCCURRED event per reported error.
        system (SystemStrategy): Delivers user-facing notifications.
        notifications_enabled (bool): Master switch for desktop notifications.
    """

    def __init__(
        self,
        bus: EventBus,
        system: SystemStrategy | None = None,
        notifications_enabled: bool = True,
    ):
        self.bus = bus
        self.system = system or get_system()
        self.notifications_enabled = notifications_enabled

    @staticmethod
    def classify(error: BaseException, stage: Stage) -> ErrorDetails:
        kind = classify_kind(error, stage)
        return ErrorDetails(
            kind=kind,
            message=str(error) or type(error).__name__,
            operation=stage.value,
            suggestions=SUGGESTIONS[kind],
            error=error,
        )

    def notify(self, details: ErrorDetails, show_user: bool = False) -> None:
        """Logs a classified error, publishes it, and optionally alerts the user.

        Args:
            details (ErrorDetails): The classified error.
            show_user (bool, optional): Whether to raise a desktop notification.
                                        Defaults to False.
        """
        logger.error(f"[{details.kind.value}] Error in {details.operation}: {details.message}")
        self.bus.publish(TrackerEvent.ERROR_OCCURRED, details)

        if show_user and self.notifications_enabled:
            body = details.message
            if details.suggestions:
                body = f"{body} ({' / '.join(details.suggestions)})"
            self.system.notify(details.title, body)

    def report(self, error: BaseException, stage: Stage) -> ErrorDetails:
        """Classifies and notifies in one step using the default visibility policy.

        Only configuration and filesystem errors are shown to the user; the rest
        reach the status indicator through the event bus.
        """
        details = self.classify(error, stage)
        self.notify(details, show_user=details.kind in USER_FACING_KINDS)
        return details

    def resolve(self, kind: ErrorKind, stage: Stage) -> None:
        """Announces that a previously reported error no longer applies."""
        logger.info(f"Resolved previous {kind.value} error in {stage.value}")
        self.bus.publish(TrackerEvent.ERROR_RESOLVED, (kind, stage))
