from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import CleanupError, ErrorKind


LOGGER = logging.getLogger("backup_retention")


def _canonical(path: str | Path) -> Path:
    return Path(path).expanduser().resolve(strict=False)


def is_safe(target_path: str | Path, allowed_prefixes: Iterable[str | Path]) -> bool:
    """Return True when *target_path* lives at or below one of *allowed_prefixes*.

    Both sides are resolved first, so a symlink or ``..`` segment inside the
    target cannot escape the allow-list. Matching is done per path component:
    ``/var/backups2`` is not inside ``/var/backups``.
    """
    if not str(target_path or "").strip():
        return False

    target = _canonical(target_path)
    for prefix in allowed_prefixes:
        if not str(prefix or "").strip():
            continue
        root = _canonical(prefix)
        if target == root or root in target.parents:
            return True
    return False


def require_safe(target_path: str | Path, allowed_prefixes: Iterable[str | Path]) -> None:
    prefixes = list(allowed_prefixes)
    if not is_safe(target_path, prefixes):
        allowed = ", ".join(str(item) for item in prefixes) or "<none>"
        raise CleanupError(
            ErrorKind.UNSAFE_PATH,
            f"The target path '{target_path}' is not within the allowed safe paths ({allowed}). "
            "Aborting for safety.",
        )
    LOGGER.info("[CLEANUP]: Target path '%s' is within allowed safe paths.", target_path)
