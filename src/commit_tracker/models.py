"""Value types passed between the detector, appender and reconciler."""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .classifier import ErrorKind
from .errors import TrackerError


@dataclass(frozen=True)
class HeadEvent:
    """A raw "HEAD changed" notification for one repository.

    Attributes:
        head_commit (str | None): The new HEAD commit, if any.
        branch (str | None): The checked-out branch, None when detached.
        repo_path (Path): The repository root the event belongs to.
    """

    head_commit: str | None
    branch: str | None
    repo_path: Path


@dataclass(frozen=True)
class RepositoryHandle:
    """A freshly resolved snapshot of a repository's identity."""

    path: Path
    current_branch: str
    has_remote_origin: bool


@dataclass(frozen=True)
class CommitRecord:
    """One commit as it is written to the tracking file.

    Attributes:
        commit_id (str): The full commit hash.
        message (str): The commit subject and body.
        author (str): Formatted as ``Name <email>``.
        branch (str): The branch the commit was observed on.
        repo_path (str): The absolute path of the observed repository.
        timestamp (str): ISO-8601 time the record was created.
        repo_name (str): Short repository name for events and notifications.
    """

    commit_id: str
    message: str
    author: str
    branch: str
    repo_path: str
    timestamp: str = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat()
    )
    repo_name: str = ""

    def to_block(self) -> str:
        """Renders the record in the tracking file's block format."""
        return (
            f"Commit: {self.commit_id}\n"
            f"Message: {self.message}\n"
            f"Date: {self.timestamp}\n"
            f"Branch: {self.branch}\n"
            f"Repository Path: {self.repo_path}\n"
            "\n"
        )


class PushOutcome(Enum):
    """Terminal states of a push reconciliation run."""

    PUSHED = "pushed"
    PUSHED_WITH_UPSTREAM = "pushed-with-upstream"
    FORCED_WITH_LEASE = "forced-with-lease"
    COMMITTED_LOCALLY_ONLY = "committed-locally-only"
    FAILED = "failed"


# Reasons attached to COMMITTED_LOCALLY_ONLY.
REASON_NO_REMOTE = "no-remote"
REASON_PUSH_EXHAUSTED = "push-exhausted"
REASON_CANCELLED = "cancelled"


@dataclass(frozen=True)
class PushAttemptResult:
    """The result of one reconciler run.

    Attributes:
        outcome (PushOutcome): Which terminal state was reached.
        committed (bool): Whether a new commit was created in the tracking repo.
        reason (str | None): Why the push was deferred (locally-only outcomes).
        error (TrackerError | None): The error behind a FAILED outcome, or the
            last push failure behind a push-exhausted outcome.
        error_kind (ErrorKind | None): The classified kind of ``error``.
        strategies (tuple[str, ...]): The push strategies that were attempted.
    """

    outcome: PushOutcome
    committed: bool = False
    reason: str | None = None
    error: TrackerError | None = None
    error_kind: ErrorKind | None = None
    strategies: tuple[str, ...] = ()

    @property
    def pushed(self) -> bool:
        return self.outcome in (
            PushOutcome.PUSHED,
            PushOutcome.PUSHED_WITH_UPSTREAM,
            PushOutcome.FORCED_WITH_LEASE,
        )
