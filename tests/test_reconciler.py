import asyncio
from pathlib import Path

from commit_tracker.cache import CacheKey, ResultCache
from commit_tracker.classifier import ErrorClassifier, ErrorKind
from commit_tracker.errors import GitErrorKind
from commit_tracker.git_wrapper import GitRepo
from commit_tracker.models import (
    REASON_CANCELLED,
    REASON_NO_REMOTE,
    REASON_PUSH_EXHAUSTED,
    PushOutcome,
)
from commit_tracker.reconciler import (
    STRATEGY_FORCE_WITH_LEASE,
    STRATEGY_PLAIN,
    STRATEGY_UPSTREAM,
    PushReconciler,
)

from conftest import FakeExecutor, fail, ok


def _reconciler(
    tmp_path: Path, executor: FakeExecutor, classifier: ErrorClassifier | None = None
) -> PushReconciler:
    repo = GitRepo(tmp_path, executor, ResultCache())
    return PushReconciler(repo, classifier)


def _with_origin(executor: FakeExecutor, branch: str = "main") -> FakeExecutor:
    executor.on("remote", respond=ok("origin"))
    executor.on("branch", "--show-current", respond=ok(branch))
    return executor


def test_plain_push_succeeds(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies the happy path: stage, commit, plain push."""
    _with_origin(executor)
    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "Track abc"))

    assert result.outcome is PushOutcome.PUSHED
    assert result.committed is True
    assert result.strategies == (STRATEGY_PLAIN,)
    assert executor.commands()[:2] == [
        ("add", "--", "commits.log"),
        ("commit", "-m", "Track abc"),
    ]


def test_upstream_step_runs_after_plain_push_fails(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies the ladder order and that force-with-lease is never reached on success."""
    _with_origin(executor, branch="feature-x")
    executor.on("push", respond=fail("fatal: The current branch feature-x has no upstream branch."))
    executor.on("push", "-u", respond=ok())

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "Track abc"))

    assert result.outcome is PushOutcome.PUSHED_WITH_UPSTREAM
    assert result.strategies == (STRATEGY_PLAIN, STRATEGY_UPSTREAM)
    pushes = [argv for argv in executor.commands() if argv[0] == "push"]
    assert pushes == [("push",), ("push", "-u", "origin", "feature-x")]
    assert executor.count("push", "--force-with-lease") == 0


def test_force_with_lease_is_last_resort(tmp_path: Path, executor: FakeExecutor) -> None:
    _with_origin(executor)
    executor.on("push", respond=fail("! [rejected] main -> main (non-fast-forward)"))
    executor.on("push", "--force-with-lease", respond=ok())

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "Track abc"))

    assert result.outcome is PushOutcome.FORCED_WITH_LEASE
    assert result.strategies == (STRATEGY_PLAIN, STRATEGY_UPSTREAM, STRATEGY_FORCE_WITH_LEASE)


def test_no_remote_commits_locally_without_pushing(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies that a repository without origin never attempts a push."""
    executor.on("remote", respond=ok(""))

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "Track abc"))

    assert result.outcome is PushOutcome.COMMITTED_LOCALLY_ONLY
    assert result.reason == REASON_NO_REMOTE
    assert result.committed is True
    assert executor.count("push") == 0


def test_exhausted_ladder_defers_push(
    tmp_path: Path, executor: FakeExecutor, classifier: ErrorClassifier
) -> None:
    """Verifies that failing every step keeps the commit local and reports the kind."""
    _with_origin(executor)
    executor.on(
        "push",
        respond=fail(
            "fatal: unable to access 'https://example.com/t.git/': Could not resolve host"
        ),
    )

    result = asyncio.run(_reconciler(tmp_path, executor, classifier).run("commits.log", "m"))

    assert result.outcome is PushOutcome.COMMITTED_LOCALLY_ONLY
    assert result.reason == REASON_PUSH_EXHAUSTED
    assert result.error_kind is ErrorKind.NETWORK
    assert result.strategies == (STRATEGY_PLAIN, STRATEGY_UPSTREAM, STRATEGY_FORCE_WITH_LEASE)
    assert executor.count("push") == 3
    classifier.system.notify.assert_not_called()


def test_push_timeout_falls_through(tmp_path: Path, executor: FakeExecutor) -> None:
    _with_origin(executor)
    executor.on(
        "push",
        respond=[
            fail("", returncode=None, kind=GitErrorKind.TIMEOUT),
            ok(),
        ],
    )

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "m"))

    assert result.outcome is PushOutcome.PUSHED_WITH_UPSTREAM


def test_nothing_to_commit_still_pushes(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies that a clean tree still pushes earlier unpushed commits."""
    _with_origin(executor)
    executor.on(
        "commit",
        respond=fail("", returncode=1, stdout="On branch main\nnothing to commit, working tree clean"),
    )

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "m"))

    assert result.outcome is PushOutcome.PUSHED
    assert result.committed is False


def test_stage_failure_is_terminal(
    tmp_path: Path, executor: FakeExecutor, classifier: ErrorClassifier
) -> None:
    """Verifies that a failed `git add` stops the run before committing."""
    executor.on("add", respond=fail("fatal: not a git repository (or any of the parent directories): .git", 128))

    result = asyncio.run(_reconciler(tmp_path, executor, classifier).run("commits.log", "m"))

    assert result.outcome is PushOutcome.FAILED
    assert result.error_kind is ErrorKind.REPOSITORY
    assert executor.count("commit") == 0
    assert executor.count("push") == 0


def test_commit_failure_is_terminal(tmp_path: Path, executor: FakeExecutor) -> None:
    executor.on("commit", respond=fail("fatal: unable to auto-detect email address", 128))

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "m"))

    assert result.outcome is PushOutcome.FAILED
    assert result.error_kind is ErrorKind.GIT_OPERATION
    assert executor.count("push") == 0


def test_cancellation_between_steps(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies that cancellation stops the ladder at the next step boundary."""
    _with_origin(executor)
    cancel = None

    def plain_fails_then_cancel(argv: tuple[str, ...]):
        cancel.set()
        return fail("rejected")(argv)

    executor.on("push", respond=plain_fails_then_cancel)

    async def scenario():
        nonlocal cancel
        cancel = asyncio.Event()
        return await _reconciler(tmp_path, executor).run("commits.log", "m", cancel)

    result = asyncio.run(scenario())

    assert result.outcome is PushOutcome.COMMITTED_LOCALLY_ONLY
    assert result.reason == REASON_CANCELLED
    assert result.strategies == (STRATEGY_PLAIN,)
    assert executor.count("push") == 1


def test_detached_head_skips_upstream_step(tmp_path: Path, executor: FakeExecutor) -> None:
    _with_origin(executor, branch="")
    executor.on("push", respond=fail("rejected"))
    executor.on("push", "--force-with-lease", respond=ok())

    result = asyncio.run(_reconciler(tmp_path, executor).run("commits.log", "m"))

    assert result.outcome is PushOutcome.FORCED_WITH_LEASE
    assert executor.count("push", "-u") == 0


def test_mutations_invalidate_cached_queries(tmp_path: Path, executor: FakeExecutor) -> None:
    """Verifies that reads cached before a run are dropped by its mutations."""
    _with_origin(executor)
    cache = ResultCache()
    repo = GitRepo(tmp_path, executor, cache)

    async def scenario() -> None:
        await repo.status_porcelain()
        assert cache.peek(CacheKey.of("status", tmp_path)) is not None
        await PushReconciler(repo).run("commits.log", "m")

    asyncio.run(scenario())
    assert cache.peek(CacheKey.of("status", tmp_path)) is None
