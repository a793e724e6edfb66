import logging
import os
from pathlib import Path, PurePath

from .constants import APP_NAME
from .errors import InvalidPathError, TrackingFileError
from .models import CommitRecord

logger = logging.getLogger(APP_NAME)


class LogAppender:
    """Appends commit records to a tracking file inside the tracking root.

    The file is append-only: prior content is never truncated or rewritten, and
    each record is written with a single append call followed by an fsync.

    Attributes:
        root (Path): The tracking repository; every write target must be inside it.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def validate(self, target: Path | str) -> Path:
        """Checks that a write target is a safe location under the tracking root.

        Args:
            target (Path | str): The requested tracking file path.

        Returns:
            Path: The resolved target path.

        Raises:
            InvalidPathError: If the path contains '..' segments or resolves
                              outside the tracking root.
        """
        raw = PurePath(str(target))
        if ".." in raw.parts:
            raise InvalidPathError(f"Parent directory traversal in tracking path: {target}")

        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate

        resolved = candidate.resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise InvalidPathError(f"Tracking path is outside {self.root}: {target}")
        if resolved == self.root.resolve():
            raise InvalidPathError(f"Tracking path is the tracking root itself: {target}")
        return resolved

    def append(self, target: Path | str, record: CommitRecord) -> Path:
        """Writes one record block to the end of the tracking file.

        Args:
            target (Path | str): The tracking file, absolute or relative to the root.
            record (CommitRecord): The commit to record.

        Returns:
            Path: The file that was written.

        Raises:
            InvalidPathError: If the target fails validation. Nothing is written.
            TrackingFileError: If the directory or file cannot be written.
        """
        path = self.validate(target)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TrackingFileError(f"Could not create {path.parent}: {e}") from e

        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(record.to_block())
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise TrackingFileError(f"Could not append to {path}: {e}") from e

        logger.info(f"LOGGED {record.commit_id[:8]} ({record.branch}) -> {path.name}")
        return path

    def contains(self, target: Path | str, commit_id: str) -> bool:
        """Reports whether the tracking file already holds a record for a commit."""
        path = self.validate(target)
        if not path.exists():
            return False

        needle = f"Commit: {commit_id}"
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return any(line.rstrip("\n") == needle for line in f)
        except OSError as e:
            logger.warning(f"Could not scan {path} for {commit_id[:8]}: {e}")
            return False
