from __future__ import annotations

import fnmatch
import logging
import stat
import time
from pathlib import Path
from typing import Iterable

from .models import FileCandidate, FileCategory, SECONDS_PER_DAY


LOGGER = logging.getLogger("backup_retention")

LOG_PATTERNS = ["*.log"]


def archive_patterns(extensions: Iterable[str]) -> list[str]:
    out: list[str] = []
    for ext in extensions:
        normalized = str(ext or "").strip().lstrip(".").lower()
        if normalized:
            out.append(f"*.{normalized}")
    return out


def _matches(name: str, patterns: list[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern) for pattern in patterns)


def scan(
    directory: str | Path,
    patterns: Iterable[str],
    *,
    category: FileCategory,
    min_age_days: int = 0,
    min_size_bytes: int = 0,
    now: float | None = None,
) -> list[FileCandidate]:
    """List regular files directly inside *directory* that match *patterns*.

    Matching is case-insensitive. Files younger than ``min_age_days`` whole days
    or smaller than ``min_size_bytes`` are left out. The result is in directory
    listing order; callers sort as needed.
    """
    root = Path(directory)
    lowered_patterns = [str(pattern).lower() for pattern in patterns]
    if not lowered_patterns:
        return []

    if not root.is_dir():
        LOGGER.warning("[CLEANUP]: Scan directory '%s' does not exist or is not a directory.", root)
        return []

    current_time = time.time() if now is None else float(now)
    min_age_seconds = max(0, int(min_age_days)) * SECONDS_PER_DAY

    out: list[FileCandidate] = []
    for item in root.iterdir():
        if not _matches(item.name, lowered_patterns):
            continue
        try:
            info = item.lstat()
        except OSError as exc:
            LOGGER.warning("[CLEANUP]: Could not stat '%s' (%s). Skipping.", item, exc)
            continue
        if not stat.S_ISREG(info.st_mode):
            continue
        if current_time - info.st_mtime < min_age_seconds:
            continue
        if int(info.st_size) < int(min_size_bytes):
            continue
        out.append(
            FileCandidate(
                path=item,
                modified_at=float(info.st_mtime),
                size_bytes=int(info.st_size),
                category=category,
            )
        )
    return out
