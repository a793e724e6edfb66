"""Stage, commit and push the tracking repository.

One run walks a fixed ladder and ends in exactly one PushAttemptResult:

    add -> commit -> (no remote: locally only)
        -> push -> push -u origin <branch> -> push --force-with-lease
        -> (all failed: locally only)

Push failures never surface as hard errors: the commit stays in the local
tracking repository and the next accepted commit re-runs the ladder against
the updated history.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path

from .classifier import ErrorClassifier, Stage, classify_kind
from .constants import APP_NAME, DEFAULT_REMOTE
from .errors import GitError, GitErrorKind
from .git_wrapper import GitRepo, GitResult
from .models import (
    REASON_CANCELLED,
    REASON_NO_REMOTE,
    REASON_PUSH_EXHAUSTED,
    PushAttemptResult,
    PushOutcome,
)

logger = logging.getLogger(APP_NAME)

_NOTHING_TO_COMMIT = re.compile(r"nothing (added )?to commit|no changes added to commit")

STRATEGY_PLAIN = "push"
STRATEGY_UPSTREAM = "push-upstream"
STRATEGY_FORCE_WITH_LEASE = "push-force-with-lease"


def is_nothing_to_commit(result: GitResult) -> bool:
    """Detects the non-zero `git commit` exit that only means a clean tree."""
    return result.returncode == 1 and bool(
        _NOTHING_TO_COMMIT.search(f"{result.stdout}\n{result.stderr}")
    )


class PushReconciler:
    """Runs the stage/commit/push ladder against the tracking repository.

    Attributes:
        repo (GitRepo): The tracking repository.
        classifier (ErrorClassifier | None): Receives failures for logging and events.
        remote (str): The remote to push to.
    """

    def __init__(
        self,
        repo: GitRepo,
        classifier: ErrorClassifier | None = None,
        remote: str = DEFAULT_REMOTE,
    ):
        self.repo = repo
        self.classifier = classifier
        self.remote = remote

    def _failed(self, error: GitError, stage: Stage, committed: bool = False) -> PushAttemptResult:
        if self.classifier is not None:
            kind = self.classifier.report(error, stage).kind
        else:
            kind = classify_kind(error, stage)
        return PushAttemptResult(
            PushOutcome.FAILED, committed=committed, error=error, error_kind=kind
        )

    async def run(
        self,
        tracking_file: Path | str,
        message: str,
        cancel: asyncio.Event | None = None,
    ) -> PushAttemptResult:
        """Stages and commits the tracking file, then walks the push ladder.

        Args:
            tracking_file (Path | str): The file to stage, relative to or inside the repo.
            message (str): The commit message for the tracking repository.
            cancel (asyncio.Event | None, optional):    Advisory cancellation. Checked
                                                        only between push steps.

        Returns:
            PushAttemptResult: The terminal outcome of this run.
        """
        # 1. Stage.
        staged = await self.repo.add(str(tracking_file))
        if not staged.ok:
            logger.error(f"STAGE FAILED {self.repo.path.name}: {staged.error}")
            return self._failed(staged.error, Stage.STAGE)

        # 2. Commit. A clean tree is not an error; earlier unpushed commits may still need pushing.
        committed = await self.repo.commit(message)
        if committed.ok:
            is_new_commit = True
        elif is_nothing_to_commit(committed):
            logger.info(f"NOTHING TO COMMIT {self.repo.path.name}")
            is_new_commit = False
        else:
            logger.error(f"COMMIT FAILED {self.repo.path.name}: {committed.error}")
            return self._failed(committed.error, Stage.COMMIT)

        return await self.push(committed=is_new_commit, cancel=cancel)

    async def push(
        self, committed: bool = False, cancel: asyncio.Event | None = None
    ) -> PushAttemptResult:
        """Walks the push ladder without staging or committing anything.

        Args:
            committed (bool, optional): Whether the caller just created a commit.
            cancel (asyncio.Event | None, optional): Advisory cancellation.

        Returns:
            PushAttemptResult: The terminal outcome of the ladder.
        """
        # 3. Without a remote there is nothing to push to; this is a normal end state.
        try:
            has_remote = await self.repo.has_remote(self.remote)
        except GitError as e:
            return self._failed(e, Stage.PUSH, committed)
        if not has_remote:
            logger.info(f"LOCAL ONLY {self.repo.path.name}: no '{self.remote}' remote.")
            return PushAttemptResult(
                PushOutcome.COMMITTED_LOCALLY_ONLY, committed=committed, reason=REASON_NO_REMOTE
            )

        ladder: list[tuple[str, PushOutcome, Callable[[], Awaitable[GitResult]]]] = [
            (STRATEGY_PLAIN, PushOutcome.PUSHED, self._push_plain),
            (STRATEGY_UPSTREAM, PushOutcome.PUSHED_WITH_UPSTREAM, self._push_upstream),
            (STRATEGY_FORCE_WITH_LEASE, PushOutcome.FORCED_WITH_LEASE, self._push_force_with_lease),
        ]

        attempted: list[str] = []
        last_error: GitError | None = None
        for strategy, outcome, step in ladder:
            if cancel is not None and cancel.is_set():
                logger.info(f"CANCELLED {self.repo.path.name}: stopped before {strategy}.")
                return PushAttemptResult(
                    PushOutcome.COMMITTED_LOCALLY_ONLY,
                    committed=committed,
                    reason=REASON_CANCELLED,
                    error=last_error,
                    strategies=tuple(attempted),
                )

            attempted.append(strategy)
            result = await step()
            if result.ok:
                logger.info(f"SUCCESS {self.repo.path.name}: {strategy} ({outcome.value}).")
                return PushAttemptResult(outcome, committed=committed, strategies=tuple(attempted))

            last_error = result.error
            logger.warning(f"{strategy.upper()} FAILED {self.repo.path.name}: {result.error}")

        # 7. Exhausted: the commit is safe locally, only the push is deferred.
        kind = classify_kind(last_error, Stage.PUSH) if last_error else None
        if self.classifier is not None and last_error is not None:
            self.classifier.notify(self.classifier.classify(last_error, Stage.PUSH))
        logger.info(f"LOCAL ONLY {self.repo.path.name}: push deferred to next commit.")
        return PushAttemptResult(
            PushOutcome.COMMITTED_LOCALLY_ONLY,
            committed=committed,
            reason=REASON_PUSH_EXHAUSTED,
            error=last_error,
            error_kind=kind,
            strategies=tuple(attempted),
        )

    async def _push_plain(self) -> GitResult:
        return await self.repo.push()

    async def _push_upstream(self) -> GitResult:
        try:
            branch = await self.repo.current_branch()
        except GitError as e:
            return GitResult(("push", "-u", self.remote), returncode=None, error=e)
        if not branch:
            # Detached HEAD has no branch to track; fall through to the next step.
            return GitResult(
                ("push", "-u", self.remote),
                returncode=None,
                error=GitError(
                    GitErrorKind.NON_ZERO_EXIT,
                    "HEAD is detached; no branch to set upstream for",
                    ("push", "-u", self.remote),
                ),
            )
        return await self.repo.push("-u", self.remote, branch)

    async def _push_force_with_lease(self) -> GitResult:
        return await self.repo.push("--force-with-lease")
