from __future__ import annotations

import fcntl
import hashlib
import logging
import os
from pathlib import Path

from .errors import CleanupError, ErrorKind


LOGGER = logging.getLogger("backup_retention")

DEFAULT_LOCK_DIR = Path("/var/lock")


def lock_file_path(lock_dir: str | Path, target_path: str | Path) -> Path:
    """Lock file for *target_path*. Aliases of one directory share a lock."""
    canonical = Path(target_path).expanduser().resolve(strict=False)
    digest = hashlib.md5(str(canonical).encode("utf-8")).hexdigest()
    return Path(lock_dir) / f"remove_old_{digest}.lock"


class RunLock:
    """Exclusive, non-blocking advisory lock scoped to one target directory."""

    def __init__(self, *, lock_dir: str | Path, target_path: str | Path):
        self.path = lock_file_path(lock_dir, target_path)
        self.target_path = str(target_path)
        self._fd: int | None = None

    @property
    def is_held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        try:
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT, 0o644)
        except OSError as exc:
            raise CleanupError(
                ErrorKind.LOCK_UNAVAILABLE,
                f"Could not open lockfile '{self.path}': {exc}. Check permissions or if path is valid.",
            ) from exc

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            os.close(fd)
            raise CleanupError(
                ErrorKind.LOCK_HELD,
                f"Another cleanup is already running for path '{self.target_path}' (Lock: '{self.path}').",
            ) from exc
        except OSError as exc:
            os.close(fd)
            raise CleanupError(
                ErrorKind.LOCK_UNAVAILABLE,
                f"Could not lock '{self.path}': {exc}",
            ) from exc

        self._fd = fd
        LOGGER.debug("[CLEANUP]: Acquired lock '%s'.", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        LOGGER.debug("[CLEANUP]: Lock file '%s' released.", self.path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
