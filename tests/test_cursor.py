import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from commit_tracker.cursor import CursorStore


def test_set_persists_across_instances(tmp_path: Path) -> None:
    """Verifies that the cursor survives a restart."""
    state = tmp_path / "cursor.json"
    CursorStore(state).set(tmp_path / "app", "abc123")

    assert CursorStore(state).get(tmp_path / "app") == "abc123"
    assert not state.with_suffix(".tmp").exists()


def test_keys_are_normalized(tmp_path: Path) -> None:
    (tmp_path / "app").mkdir()
    store = CursorStore(tmp_path / "cursor.json")
    store.set(tmp_path / "app", "abc123")

    assert store.get(tmp_path / "app" / ".." / "app") == "abc123"
    assert store.get(tmp_path / "other") is None


def test_malformed_file_starts_empty(tmp_path: Path, caplog: MagicMock) -> None:
    """Verifies that a corrupt cursor file is ignored with a warning."""
    state = tmp_path / "cursor.json"
    state.write_text("{not json")

    store = CursorStore(state)
    assert store.get(tmp_path) is None
    assert "Failed to read cursor file" in caplog.text

    store.set(tmp_path, "def456")
    assert json.loads(state.read_text()) == {str(tmp_path.resolve()): "def456"}


def test_failed_write_leaves_previous_state(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that a failed flush raises and keeps the old file intact."""
    state = tmp_path / "cursor.json"
    store = CursorStore(state)
    store.set(tmp_path / "app", "old")

    mocker.patch("commit_tracker.cursor.os.replace", side_effect=OSError("disk full"))
    with pytest.raises(OSError):
        store.set(tmp_path / "app", "new")

    assert CursorStore(state).get(tmp_path / "app") == "old"
    assert not state.with_suffix(".tmp").exists()
