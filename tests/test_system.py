from pathlib import Path
from unittest.mock import MagicMock

import pytest

from commit_tracker import system


def test_get_system_by_platform(mocker: MagicMock) -> None:
    """Verifies that the notification strategy is chosen by platform.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch("sys.platform", "darwin")
    assert isinstance(system.get_system(), system.MacOSStrategy)

    mocker.patch("sys.platform", "linux")
    assert isinstance(system.get_system(), system.LinuxStrategy)

    mocker.patch("sys.platform", "win32")
    assert type(system.get_system()) is system.SystemStrategy


def test_macos_notify_sanitizes_quotes(mocker: MagicMock) -> None:
    """Verifies that quotes cannot break out of the AppleScript string."""
    mock_run = mocker.patch("subprocess.run")

    system.MacOSStrategy().notify('Push "failed"', 'host "x" unreachable')

    script = mock_run.call_args.args[0][2]
    assert script == "display notification \"host 'x' unreachable\" with title \"Push 'failed'\""


def test_linux_notify_tolerates_missing_binary(mocker: MagicMock) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError)
    system.LinuxStrategy().notify("Title", "Body")


def test_register_and_unregister(tmp_path: Path) -> None:
    """Verifies the registry round trip, including duplicate registration."""
    registry = tmp_path / "state" / "registry"
    repo = tmp_path / "app"
    repo.mkdir()

    assert system.register_repo(repo, registry) is True
    assert system.register_repo(repo, registry) is False
    assert system.get_registered_repos(registry) == [repo.resolve()]

    assert system.unregister_repo(repo.resolve(), registry) is True
    assert system.unregister_repo(repo.resolve(), registry) is False
    assert system.get_registered_repos(registry) == []
    assert not registry.with_suffix(".tmp").exists()


def test_unregister_failure_cleans_temp_file(tmp_path: Path, mocker: MagicMock) -> None:
    registry = tmp_path / "registry"
    registry.write_text("/a\n/b\n")
    mocker.patch("commit_tracker.system.os.replace", side_effect=OSError("busy"))

    with pytest.raises(OSError):
        system.unregister_repo("/a", registry)

    assert registry.read_text() == "/a\n/b\n"
    assert not registry.with_suffix(".tmp").exists()
