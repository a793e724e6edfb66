"""Exception hierarchy shared by every stage of the tracking pipeline."""

from enum import Enum


class TrackerError(Exception):
    """Base class for all errors raised by Commit Tracker."""


class ConfigurationError(TrackerError):
    """Raised when required settings are missing or out of range."""


class RepositoryError(ConfigurationError):
    """Raised when a configured path exists but is not a git repository."""


class TrackingFileError(TrackerError):
    """Raised when the tracking file cannot be created or appended to."""


class InvalidPathError(TrackingFileError):
    """Raised when a write target escapes the tracking root."""


class GitErrorKind(Enum):
    """The closed set of ways a git invocation can fail."""

    PATH_NOT_FOUND = "path-not-found"
    GIT_NOT_FOUND = "git-not-found"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non-zero-exit"


class GitError(TrackerError):
    """A failed git invocation.

    Attributes:
        kind (GitErrorKind): Why the invocation failed.
        args_used (tuple[str, ...]): The git arguments that were run.
        returncode (int | None): The exit status, if the process finished.
        stderr (str): Captured standard error, stripped.
    """

    def __init__(
        self,
        kind: GitErrorKind,
        message: str,
        args_used: tuple[str, ...] = (),
        returncode: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.kind = kind
        self.args_used = args_used
        self.returncode = returncode
        self.stderr = stderr
