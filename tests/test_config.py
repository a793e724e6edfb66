"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from commit_tracker.config import Config, parse_size, parse_string_list, parse_time
from commit_tracker.errors import ConfigurationError


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with sensible defaults."""
    conf = Config()
    assert conf.tracking.remote_name == "origin"
    assert conf.tracking.log_file == "commit-tracker.log"
    assert conf.tracking.excluded_branches == []
    assert conf.daemon.poll_interval == 5
    assert conf.debounce_seconds == pytest.approx(0.3)
    assert conf.limits.max_log_size == 5 * 1024 * 1024


def test_config_load_from_file(tmp_path: Path) -> None:
    """Verifies that values from the TOML file override the defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "[tracking]\n"
        'repo_path = "/srv/tracking"\n'
        'excluded_branches = ["wip", "scratch"]\n'
        'allowed_authors = "Ada <ada@example.com>, Bob <bob@example.com>"\n'
        "[daemon]\n"
        'poll_interval = "1min"\n'
        "debounce_ms = 500\n"
        "show_notifications = false\n"
        "[limits]\n"
        'max_log_size = "1MB"\n'
    )

    conf = Config.load(config_file)

    assert conf.tracking_repo == Path("/srv/tracking")
    assert conf.tracking_file == Path("/srv/tracking/commit-tracker.log")
    assert conf.tracking.excluded_branches == ["wip", "scratch"]
    assert conf.tracking.allowed_authors == ["Ada <ada@example.com>", "Bob <bob@example.com>"]
    assert conf.daemon.poll_interval == 60
    assert conf.debounce_seconds == pytest.approx(0.5)
    assert conf.daemon.show_notifications is False
    assert conf.limits.max_log_size == 1024 * 1024


def test_config_uses_default_path(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that load() reads CONFIG_FILE when no path is given."""
    config_file = tmp_path / "config.toml"
    config_file.write_text('[tracking]\nremote_name = "upstream"\n')
    mocker.patch("commit_tracker.config.CONFIG_FILE", config_file)

    assert Config.load().tracking.remote_name == "upstream"


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert Config.load(tmp_path / "absent.toml") == Config()


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    assert parse_time(50) == 50
    assert parse_time("30s") == 30
    assert parse_time("10 min") == 600
    assert parse_time("1.5h") == 5400

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


def test_parse_string_list() -> None:
    assert parse_string_list("a, b,,c") == ["a", "b", "c"]
    assert parse_string_list(["x", "y", "x"]) == ["x", "y"]
    with pytest.raises(ValueError):
        parse_string_list([1, 2])


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fallback to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)

    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "[tracking]\n"
        "excluded_branches = 3\n"
        "[daemon]\n"
        'poll_interval = "fast"\n'
        'fake_setting = "ignored"\n'
        '[limits]\nmax_log_size = "10 gallons"\n'
        "[extras]\nfoo = 1\n"
    )

    conf = Config.load(config_file)

    assert conf.tracking.excluded_branches == []
    assert conf.daemon.poll_interval == 5
    assert conf.limits.max_log_size == 5242880

    assert "Unknown config keys in [daemon]: fake_setting" in caplog.text
    assert "Unknown config sections in config.toml: extras" in caplog.text
    assert "Config error in [daemon].poll_interval: Invalid time format" in caplog.text
    assert "Config error in [limits].max_log_size: Invalid size format" in caplog.text
    assert "Config error in [tracking].excluded_branches" in caplog.text


def test_config_syntax_error_is_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[tracking\nrepo_path = ")

    conf = Config.load(config_file)

    assert conf == Config()
    assert "Config syntax error" in caplog.text


@pytest.mark.parametrize(
    "section,key,value,message",
    [
        ("tracking", "repo_path", "", "No tracking repository configured"),
        ("tracking", "repo_path", "relative/dir", "must be absolute"),
        ("tracking", "log_file", "/abs/log.txt", "relative file name"),
        ("daemon", "update_frequency_minutes", 0, "between 1 and 60"),
        ("daemon", "update_frequency_minutes", 61, "between 1 and 60"),
        ("daemon", "poll_interval", 0, "at least 1 second"),
    ],
)
def test_validate_rejects_bad_settings(section: str, key: str, value: object, message: str) -> None:
    """Verifies that validate() raises ConfigurationError for unusable settings."""
    conf = Config()
    conf.tracking.repo_path = "/srv/tracking"
    setattr(getattr(conf, section), key, value)

    with pytest.raises(ConfigurationError, match=message):
        conf.validate()


def test_validate_accepts_home_relative_path() -> None:
    conf = Config()
    conf.tracking.repo_path = "~/tracking"
    assert conf.validate() is conf
