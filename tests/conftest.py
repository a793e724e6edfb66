"""Shared fakes for exercising git-dependent code without spawning git."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from commit_tracker.cache import ResultCache
from commit_tracker.classifier import ErrorClassifier
from commit_tracker.errors import GitError, GitErrorKind
from commit_tracker.events import EventBus
from commit_tracker.git_wrapper import GitResult

Responder = Callable[[tuple[str, ...]], GitResult]


def ok(stdout: str = "") -> Responder:
    """A responder for a successful git invocation."""
    return lambda argv: GitResult(argv, stdout=stdout)


def fail(
    stderr: str = "fatal: something went wrong",
    returncode: int | None = 1,
    kind: GitErrorKind = GitErrorKind.NON_ZERO_EXIT,
    stdout: str = "",
) -> Responder:
    """A responder for a failed git invocation."""
    return lambda argv: GitResult(
        argv,
        stdout=stdout,
        stderr=stderr,
        returncode=returncode,
        error=GitError(kind, f"Git error: {stderr}", argv, returncode, stderr),
    )


class FakeExecutor:
    """Answers git invocations from scripted responders matched by argument prefix.

    The longest registered prefix wins. A list of responders is consumed in
    order, with the last one repeating. Unmatched invocations succeed with
    empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Path, tuple[str, ...]]] = []
        self._routes: dict[tuple[str, ...], list[Responder]] = {}

    def on(self, *prefix: str, respond: Responder | list[Responder]) -> "FakeExecutor":
        self._routes[prefix] = list(respond) if isinstance(respond, list) else [respond]
        return self

    async def execute(
        self, repo_path: Path, args: tuple[str, ...] | list[str], timeout: float | None = None
    ) -> GitResult:
        argv = tuple(args)
        self.calls.append((Path(repo_path), argv))
        for length in range(len(argv), 0, -1):
            queue = self._routes.get(argv[:length])
            if queue:
                responder = queue.pop(0) if len(queue) > 1 else queue[0]
                return responder(argv)
        return GitResult(argv)

    def commands(self, repo_path: Path | None = None) -> list[tuple[str, ...]]:
        return [argv for path, argv in self.calls if repo_path is None or path == repo_path]

    def count(self, *prefix: str) -> int:
        return sum(1 for _, argv in self.calls if argv[: len(prefix)] == prefix)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def classifier(bus: EventBus) -> ErrorClassifier:
    """A classifier whose desktop notifications go to a mock."""
    return ErrorClassifier(bus, system=MagicMock())
