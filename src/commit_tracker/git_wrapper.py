import asyncio
import contextlib
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .cache import CacheKey, ResultCache, normalize_path
from .constants import (
    APP_NAME,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_REMOTE,
    GIT_ENV_OVERRIDES,
    NETWORK_GIT_TIMEOUT,
    NETWORK_SUBCOMMANDS,
    TTL_BRANCH,
    TTL_COMMIT_DETAILS,
    TTL_REMOTE,
    TTL_STATUS,
    TTL_UNPUSHED,
)
from .errors import GitError, GitErrorKind
from .models import RepositoryHandle

logger = logging.getLogger(APP_NAME)


def timeout_for(args: Sequence[str]) -> float:
    """Picks the timeout tier for a git argument vector.

    Args:
        args (Sequence[str]): The git arguments (without the 'git' executable).

    Returns:
        float: NETWORK_GIT_TIMEOUT for push/pull, DEFAULT_GIT_TIMEOUT otherwise.
    """
    if NETWORK_SUBCOMMANDS.intersection(args):
        return NETWORK_GIT_TIMEOUT
    return DEFAULT_GIT_TIMEOUT


def git_environment(base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Builds the environment for a git subprocess.

    Interactive credential prompts are always disabled so that an
    authentication prompt can never hang the caller.

    Args:
        base (Mapping[str, str] | None, optional):  The environment to start from.
                                                    Defaults to os.environ.

    Returns:
        dict[str, str]: The environment to pass to the subprocess.
    """
    env = dict(os.environ if base is None else base)
    env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    env.update(GIT_ENV_OVERRIDES)
    return env


@dataclass(frozen=True)
class GitResult:
    """The outcome of a single git invocation.

    Exactly one of ``stdout`` (on success) or ``error`` (on failure) is meaningful.

    Attributes:
        args (tuple[str, ...]): The git arguments that were run.
        stdout (str): Stripped standard output.
        stderr (str): Stripped standard error. Informational on success.
        returncode (int | None): Exit status, None if the process never finished.
        error (GitError | None): The failure, if any.
    """

    args: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = 0
    error: GitError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "GitResult":
        """Raises the captured GitError if the invocation failed."""
        if self.error is not None:
            raise self.error
        return self


class GitExecutor:
    """Runs git subcommands asynchronously with tiered timeouts.

    Arguments are always passed as a discrete vector to `git -C <path>`, never
    through a shell, so branch names or messages containing shell
    metacharacters are inert.

    Attributes:
        git_binary (str): The git executable to invoke.
        calls (int): The number of subprocesses started.
    """

    def __init__(self, git_binary: str = "git"):
        self.git_binary = git_binary
        self.calls = 0

    async def execute(
        self,
        repo_path: Path,
        args: Sequence[str],
        timeout: float | None = None,
    ) -> GitResult:
        """Executes a git command within a repository.

        Args:
            repo_path (Path): The working directory. Must exist.
            args (Sequence[str]): The arguments to pass to git.
            timeout (float | None, optional):   Overrides the tiered timeout.
                                                Defaults to None.

        Returns:
            GitResult: stdout on success, or a GitError describing the failure.
        """
        argv = tuple(args)
        repo_path = Path(repo_path)
        if not repo_path.is_dir():
            return GitResult(
                argv,
                returncode=None,
                error=GitError(
                    GitErrorKind.PATH_NOT_FOUND,
                    f"Repository path does not exist: {repo_path}",
                    argv,
                ),
            )

        limit = timeout if timeout is not None else timeout_for(argv)
        self.calls += 1
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_binary,
                "-C",
                str(repo_path),
                *argv,
                cwd=repo_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=git_environment(),
            )
        except FileNotFoundError as e:
            return GitResult(
                argv,
                returncode=None,
                error=GitError(
                    GitErrorKind.GIT_NOT_FOUND, f"Git executable not found: {e}", argv
                ),
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=limit
            )
        except TimeoutError:
            # Kill rather than abandon, so no network connection is orphaned.
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            logger.warning(f"git {' '.join(argv)} timed out after {limit:g}s in {repo_path}")
            return GitResult(
                argv,
                returncode=None,
                error=GitError(
                    GitErrorKind.TIMEOUT,
                    f"git {argv[0] if argv else ''} timed out after {limit:g}s",
                    argv,
                ),
            )

        stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            return GitResult(
                argv,
                stdout=stdout,
                stderr=stderr,
                returncode=process.returncode,
                error=GitError(
                    GitErrorKind.NON_ZERO_EXIT,
                    f"Git error: {stderr or stdout or f'exit status {process.returncode}'}",
                    argv,
                    process.returncode,
                    stderr,
                ),
            )
        return GitResult(argv, stdout=stdout, stderr=stderr, returncode=0)


class GitRepo:
    """A cached, asynchronous view of one git repository.

    Read-only queries go through the shared ResultCache with per-operation TTLs;
    mutating commands invalidate everything cached for this path once they
    succeed.

    Attributes:
        path (Path): The file system path to the repository root.
        executor (GitExecutor): Runs the underlying git processes.
        cache (ResultCache): Shared memoization layer.
    """

    def __init__(self, path: Path, executor: GitExecutor, cache: ResultCache):
        self.path = Path(path)
        self.executor = executor
        self.cache = cache

    def is_git_repo(self) -> bool:
        return (self.path / ".git").exists()

    async def _run(self, args: Sequence[str], timeout: float | None = None) -> str:
        """Runs a git command and returns stdout.

        Raises:
            GitError: If the command fails.
        """
        result = await self.executor.execute(self.path, args, timeout)
        return result.raise_for_error().stdout

    async def _cached(self, operation: str, ttl: float, args: Sequence[str], detail: str = "") -> str:
        key = CacheKey.of(operation, self.path, detail)
        return await self.cache.get_or_compute(key, ttl, lambda: self._run(args))

    async def _mutate(self, args: Sequence[str]) -> GitResult:
        result = await self.executor.execute(self.path, args)
        if result.ok:
            self.cache.invalidate(self.path)
        return result

    # --- Read-only queries ---

    async def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name, or an empty string when HEAD is detached.
        """
        return await self._cached("current-branch", TTL_BRANCH, ["branch", "--show-current"])

    async def head_commit(self) -> str | None:
        """Resolves HEAD to a full hash. Not cached; HEAD is what is being watched.

        Returns:
            str | None: The hash, or None for an unborn HEAD.

        Raises:
            GitError: If HEAD cannot be read, e.g. the path is no longer a repository.
        """
        result = await self.executor.execute(self.path, ["rev-parse", "--verify", "-q", "HEAD"])
        # --verify -q reports an unborn HEAD as a bare exit status 1.
        if result.returncode == 1 and not result.stderr:
            return None
        return result.raise_for_error().stdout or None

    async def commit_message(self, commit: str) -> str:
        return await self._cached(
            "commit-message", TTL_COMMIT_DETAILS, ["log", "-1", "--format=%B", commit], commit
        )

    async def commit_author(self, commit: str) -> str:
        """Returns the commit author formatted as ``Name <email>``."""
        return await self._cached(
            "commit-author", TTL_COMMIT_DETAILS, ["log", "-1", "--format=%an <%ae>", commit], commit
        )

    async def remotes(self) -> list[str]:
        output = await self._cached("remotes", TTL_REMOTE, ["remote"])
        return output.splitlines() if output else []

    async def has_remote(self, name: str = DEFAULT_REMOTE) -> bool:
        return name in await self.remotes()

    async def remote_url(self, name: str = DEFAULT_REMOTE) -> str:
        return await self._cached("remote-url", TTL_REMOTE, ["remote", "get-url", name], name)

    async def repo_name(self, remote: str = DEFAULT_REMOTE) -> str:
        """Derives a short repository name from the remote URL.

        Falls back to the directory name when there is no usable remote.
        """
        try:
            url = await self.remote_url(remote)
        except GitError as e:
            logger.debug(f"No remote URL for {self.path.name}: {e}")
            return self.path.name
        name = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
        name = name.removesuffix(".git")
        return name or self.path.name

    async def status_porcelain(self) -> list[str]:
        output = await self._cached("status", TTL_STATUS, ["status", "--porcelain"])
        return output.splitlines() if output else []

    async def unpushed_count(self) -> int:
        """Counts local commits not yet present on any remote-tracking branch.

        Uses the upstream when one is configured, otherwise every remote ref.

        Returns:
            int: The number of unpushed commits.
        """

        async def count() -> str:
            try:
                return await self._run(["rev-list", "--count", "@{upstream}..HEAD"])
            except GitError:
                return await self._run(["rev-list", "--count", "HEAD", "--not", "--remotes"])

        key = CacheKey.of("unpushed-count", self.path)
        output = await self.cache.get_or_compute(key, TTL_UNPUSHED, count)
        return int(output or 0)

    async def handle(self) -> RepositoryHandle:
        """Resolves the repository's identity from short-lived cached queries.

        The branch is re-read once its short TTL lapses, so a checkout is
        picked up even when no HEAD event arrives.
        """
        return RepositoryHandle(
            path=Path(normalize_path(self.path)),
            current_branch=await self.current_branch(),
            has_remote_origin=await self.has_remote(DEFAULT_REMOTE),
        )

    # --- Mutations ---

    async def add(self, *paths: str) -> GitResult:
        return await self._mutate(["add", "--", *paths])

    async def commit(self, message: str) -> GitResult:
        return await self._mutate(["commit", "-m", message])

    async def push(self, *args: str) -> GitResult:
        return await self._mutate(["push", *args])

    async def pull(self, *args: str) -> GitResult:
        return await self._mutate(["pull", *args])
