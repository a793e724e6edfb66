import argparse
import asyncio
import logging
import os
import subprocess
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon, system
from .cache import ResultCache
from .config import Config
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE, PID_FILE, REGISTRY_FILE
from .cursor import CursorStore
from .errors import ConfigurationError, GitError
from .events import TrackerEvent
from .git_wrapper import GitExecutor, GitRepo
from .models import PushAttemptResult, PushOutcome
from .tracker import CommitTracker

logger = logging.getLogger(APP_NAME)
console = Console()

_OUTCOME_STYLES = {
    PushOutcome.PUSHED: ("Pushed", "bold green"),
    PushOutcome.PUSHED_WITH_UPSTREAM: ("Pushed (upstream set)", "bold green"),
    PushOutcome.FORCED_WITH_LEASE: ("Pushed (force-with-lease)", "bold yellow"),
    PushOutcome.COMMITTED_LOCALLY_ONLY: ("Committed locally only", "yellow"),
    PushOutcome.FAILED: ("Failed", "bold red"),
}


def describe_result(result: PushAttemptResult) -> Text:
    """Renders a reconciler outcome as a single styled line."""
    label, style = _OUTCOME_STYLES[result.outcome]
    text = Text(label, style=style)
    if result.reason:
        text.append(f" ({result.reason})", style="dim")
    if result.outcome is PushOutcome.FAILED and result.error is not None:
        text.append(f": {result.error}", style="red")
    elif not result.committed and result.outcome is not PushOutcome.FAILED:
        text.append(" [nothing new to commit]", style="dim")
    return text


def _run_with_tracker(
    config: Config, action: Callable[[CommitTracker], Awaitable[Any]]
) -> Any:
    """Starts a tracker without pulling, runs one action, and stops it."""

    async def runner() -> Any:
        tracker = CommitTracker(config)
        await tracker.start(sync=False)
        try:
            return await action(tracker)
        finally:
            await tracker.stop()

    try:
        return asyncio.run(runner())
    except ConfigurationError as e:
        console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)


def _resolve_repo(path: str | None) -> Path:
    return Path(path).expanduser().resolve() if path else Path.cwd()


def watch_repo(path: str | None = None, registry_path: Path = REGISTRY_FILE) -> None:
    """Adds a repository to the set of watched repositories."""
    repo_path = _resolve_repo(path)
    if not (repo_path / ".git").exists():
        console.print(f"[bold red]Not a git repository:[/bold red] {repo_path}")
        sys.exit(1)

    if system.register_repo(repo_path, registry_path):
        console.print(f"✔ Watching: [cyan]{repo_path}[/cyan]", style="green")
    else:
        console.print("Already watched.", style="dim")


def unwatch_repo(path: str | None = None, registry_path: Path = REGISTRY_FILE) -> None:
    """Stops watching a repository."""
    repo_path = _resolve_repo(path)
    if not registry_path.exists():
        console.print("Registry is empty.", style="yellow")
        return

    if system.unregister_repo(repo_path, registry_path):
        console.print(f"✔ Unwatched: [cyan]{repo_path}[/cyan]", style="green")
    else:
        console.print(f"Path not watched: [cyan]{repo_path}[/cyan]", style="yellow")


def list_repos(registry_path: Path = REGISTRY_FILE, cursor: CursorStore | None = None) -> None:
    """Lists watched repositories with their last logged commit."""
    repos = system.get_registered_repos(registry_path)
    if not repos:
        console.print("[yellow]Registry is empty.[/yellow]")
        return

    cursor = cursor or CursorStore()
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Status")
    table.add_column("Last Logged", justify="right", style="dim")

    for path in repos:
        display_path = str(path).replace(str(Path.home()), "~")

        if not path.exists():
            status_text, status_style = "Missing", "red"
        elif not (path / ".git").exists():
            status_text, status_style = "Not a repo", "bold red"
        else:
            status_text, status_style = "Active", "green"

        last = cursor.get(path)
        table.add_row(
            display_path,
            f"[{status_style}]{status_text}[/{status_style}]",
            last[:8] if last else "-",
        )

    console.print(table)


def log_now(path: str | None = None, config: Config | None = None) -> None:
    """Logs the current HEAD of a repository immediately."""
    config = config or Config.load()
    repo_path = _resolve_repo(path)
    results: list[PushAttemptResult] = []
    skipped: list[str] = []
    failed: list[Exception] = []

    async def action(tracker: CommitTracker) -> None:
        tracker.bus.subscribe(lambda _e, p: results.append(p), TrackerEvent.PUSH_COMPLETED)
        tracker.bus.subscribe(lambda _e, p: skipped.append(p[1]), TrackerEvent.COMMIT_SKIPPED)
        tracker.bus.subscribe(lambda _e, p: failed.append(p[1]), TrackerEvent.COMMIT_FAILED)
        await tracker.log_now(repo_path)

    with console.status(f"Logging HEAD of {repo_path.name}...", spinner="dots"):
        _run_with_tracker(config, action)

    if failed:
        console.print(f"[bold red]✘ Could not log commit:[/bold red] {failed[0]}")
    elif skipped:
        console.print(f"Skipped: {skipped[0]}", style="dim")
    for result in results:
        console.print(Text("✔ Logged. ", style="green") + describe_result(result))


def push_now(config: Config | None = None) -> None:
    """Runs the push ladder on the tracking repository."""
    config = config or Config.load()
    with console.status("Pushing tracking repository...", spinner="dots"):
        result = _run_with_tracker(config, lambda tracker: tracker.push_now())
    console.print(describe_result(result))


def _daemon_running() -> bool:
    if not PID_FILE.exists():
        return False
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
        return True
    except (ValueError, OSError):
        return False


def show_status(config: Config | None = None, registry_path: Path = REGISTRY_FILE) -> None:
    """Displays daemon state and the tracking repository's push status."""
    config = config or Config.load()

    content = Text()
    content.append("Daemon:   ", style="bold")
    if _daemon_running():
        content.append("Active (Running)\n", style="bold green")
    else:
        content.append("Stopped\n", style="bold red")

    content.append("Watching: ", style="bold")
    content.append(f"{len(system.get_registered_repos(registry_path))} repositories\n")

    content.append("Tracking: ", style="bold")
    if not config.tracking.repo_path:
        content.append("Not configured", style="yellow")
        console.print(Panel(content, title="Commit Tracker", expand=False))
        return
    content.append(f"{config.tracking_file}\n", style="cyan")

    content.append("Unpushed: ", style="bold")
    repo = GitRepo(config.tracking_repo, GitExecutor(), ResultCache())
    try:
        count = asyncio.run(repo.unpushed_count())
        style = "green" if count == 0 else "yellow"
        content.append(f"{count} commit(s)", style=style)
    except GitError as e:
        logger.debug(f"Unpushed count failed for {repo.path}: {e}")
        content.append("Unknown", style="red")

    console.print(Panel(content, title="Commit Tracker", expand=False))


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# Commit Tracker Configuration\n\n"
                "[tracking]\n"
                '# repo_path = "~/commit-tracking"\n'
                '# excluded_branches = ["wip"]\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Commit Tracker Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "tracking", "repo_path", "str", '""', "Absolute path of the tracking repository (required)."
    )
    table.add_row("", "log_file", "str", '"commit-tracker.log"', "Tracking file, relative to repo_path.")
    table.add_row("", "excluded_branches", "list[str]", "[]", "Branches whose commits are never logged.")
    table.add_row("", "allowed_authors", "list[str]", "[]", "If set, only these 'Name <email>' authors are logged.")
    table.add_row("", "remote_name", "str", '"origin"', "Remote the tracking repository pushes to.")

    table.add_row("daemon", "enabled", "bool", "true", "Process commits at all.")
    table.add_row("", "enable_file_logging", "bool", "true", f"Also log to {LOG_FILE}.")
    table.add_row("", "update_frequency_minutes", "int", "5", "Minutes between unpushed-status refreshes (1-60).")
    table.add_row("", "poll_interval", "int | str", "5", "Seconds between HEAD polls (e.g. '10s').")
    table.add_row("", "debounce_ms", "int", "300", "Quiet window for coalescing HEAD changes.")
    table.add_row("", "show_notifications", "bool", "true", "Raise desktop notifications for errors.")

    table.add_row("limits", "max_log_size", "int | str", '"5MB"', "Daemon log size before rotation.")

    console.print(table)


def main() -> None:
    """Main entry point for the Commit Tracker CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME, description="Mirror commits from your repositories into a tracking log."
    )
    subparsers = parser.add_subparsers(dest="command")

    watch_parser = subparsers.add_parser("watch", help="Start watching a repository")
    watch_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")

    unwatch_parser = subparsers.add_parser("unwatch", help="Stop watching a repository")
    unwatch_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")

    subparsers.add_parser("list", help="List watched repositories")
    subparsers.add_parser("run", help="Run the tracking daemon in the foreground")

    log_parser = subparsers.add_parser("log-now", help="Log the current HEAD immediately")
    log_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")

    subparsers.add_parser("push", help="Push the tracking repository now")
    subparsers.add_parser("status", help="Show daemon and tracking status")

    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args()

    if args.command == "watch":
        watch_repo(args.path)
    elif args.command == "unwatch":
        unwatch_repo(args.path)
    elif args.command == "list":
        list_repos()
    elif args.command == "run":
        daemon.main()
    elif args.command == "log-now":
        daemon.setup_logging(True)
        log_now(args.path)
    elif args.command == "push":
        daemon.setup_logging(True)
        push_now()
    elif args.command == "status":
        show_status()
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
