"""Durable per-repository record of the last processed commit."""

import contextlib
import json
import logging
import os
from pathlib import Path

from .cache import normalize_path
from .constants import APP_NAME, CURSOR_FILE

logger = logging.getLogger(APP_NAME)


class CursorStore:
    """Persists ``last_processed_commit`` keyed by repository path.

    The whole mapping lives in one JSON file that is rewritten atomically on
    every update, so a crash leaves either the old or the new state on disk.

    Attributes:
        path (Path): The JSON state file.
    """

    def __init__(self, path: Path = CURSOR_FILE):
        self.path = path
        self._state: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._state is not None:
            return self._state

        self._state = {}
        if not self.path.exists():
            return self._state

        try:
            content = self.path.read_text().strip()
            data = json.loads(content) if content else {}
            if isinstance(data, dict):
                self._state = {str(k): str(v) for k, v in data.items() if v}
            else:
                logger.warning(f"Ignoring malformed cursor file {self.path}")
        except (OSError, ValueError) as e:
            # A lost cursor re-logs commits; it never loses data.
            logger.warning(f"Failed to read cursor file {self.path}: {e}")
        return self._state

    def get(self, repo_path: Path | str) -> str | None:
        """Returns the last processed commit for a repository, if any."""
        return self._load().get(normalize_path(repo_path))

    def set(self, repo_path: Path | str, commit: str) -> None:
        """Records a commit as processed and flushes the state to disk.

        Args:
            repo_path (Path | str): The repository the commit belongs to.
            commit (str): The processed commit hash.

        Raises:
            OSError: If the state file cannot be written.
        """
        state = self._load()
        state[normalize_path(repo_path)] = commit
        self._write(state)

    def _write(self, state: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.path.with_suffix(".tmp")
        try:
            with open(tmp_file, "w") as f:
                json.dump(state, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())  # Force hardware write

            # Atomic pointer swap at the filesystem level
            os.replace(tmp_file, self.path)
        except OSError:
            if tmp_file.exists():
                with contextlib.suppress(OSError):
                    tmp_file.unlink()
            raise
