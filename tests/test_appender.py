from pathlib import Path
from unittest.mock import MagicMock

import pytest

from commit_tracker.appender import LogAppender
from commit_tracker.errors import InvalidPathError, TrackingFileError
from commit_tracker.models import CommitRecord


def _record(commit_id: str = "abc123", branch: str = "feature-x") -> CommitRecord:
    return CommitRecord(
        commit_id=commit_id,
        message="Fix login",
        author="Ada <ada@example.com>",
        branch=branch,
        repo_path="/w/app",
        timestamp="2024-01-01T00:00:00Z",
    )


def test_append_writes_block_format(tmp_path: Path) -> None:
    """Verifies the exact on-disk layout of a record block."""
    appender = LogAppender(tmp_path)
    path = appender.append("commits.log", _record())

    assert path == (tmp_path / "commits.log").resolve()
    assert path.read_text() == (
        "Commit: abc123\n"
        "Message: Fix login\n"
        "Date: 2024-01-01T00:00:00Z\n"
        "Branch: feature-x\n"
        "Repository Path: /w/app\n"
        "\n"
    )


def test_append_preserves_existing_content(tmp_path: Path) -> None:
    """Verifies that appending never rewrites what is already in the file."""
    target = tmp_path / "commits.log"
    target.write_text("hand-written header\n")
    appender = LogAppender(tmp_path)

    appender.append(target, _record("one"))
    appender.append(target, _record("two"))

    content = target.read_text()
    assert content.startswith("hand-written header\nCommit: one\n")
    assert content.index("Commit: one") < content.index("Commit: two")


def test_append_creates_missing_directories(tmp_path: Path) -> None:
    appender = LogAppender(tmp_path)
    path = appender.append("nested/dir/commits.log", _record())
    assert path.exists()


@pytest.mark.parametrize(
    "target",
    [
        "/tracked/../../etc/passwd",
        "../outside.log",
        "logs/../../outside.log",
    ],
)
def test_traversal_is_rejected_without_writing(tmp_path: Path, target: str) -> None:
    """Verifies that '..' segments are refused before anything touches the disk."""
    root = tmp_path / "tracked"
    root.mkdir()
    appender = LogAppender(root)

    with pytest.raises(InvalidPathError):
        appender.append(target, _record())

    assert list(tmp_path.rglob("*.log")) == []


def test_absolute_path_outside_root_is_rejected(tmp_path: Path) -> None:
    root = tmp_path / "tracked"
    root.mkdir()
    appender = LogAppender(root)

    with pytest.raises(InvalidPathError):
        appender.append(tmp_path / "elsewhere.log", _record())


def test_symlink_escape_is_rejected(tmp_path: Path) -> None:
    """Verifies that a symlink inside the root cannot redirect writes outside it."""
    root = tmp_path / "tracked"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(InvalidPathError):
        LogAppender(root).append("link/commits.log", _record())


def test_root_itself_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(InvalidPathError):
        LogAppender(tmp_path).validate(tmp_path)


def test_write_failure_raises_tracking_file_error(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that OS-level write errors surface as TrackingFileError."""
    mocker.patch(
        "commit_tracker.appender.open", side_effect=PermissionError("read-only"), create=True
    )
    with pytest.raises(TrackingFileError):
        LogAppender(tmp_path).append("commits.log", _record())


def test_contains_matches_whole_commit_line(tmp_path: Path) -> None:
    """Verifies that lookups match the full id, not a prefix."""
    appender = LogAppender(tmp_path)
    appender.append("commits.log", _record("abc123"))

    assert appender.contains("commits.log", "abc123")
    assert not appender.contains("commits.log", "abc")
    assert not appender.contains("missing.log", "abc123")
