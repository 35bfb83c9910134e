from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .models import GIB


LOGGER = logging.getLogger("backup_retention")


class DiskSpaceProbe:
    """Reports free space on the filesystem holding a path."""

    def free_bytes(self, path: str | Path) -> int:
        try:
            return int(shutil.disk_usage(str(path)).free)
        except OSError as exc:
            LOGGER.warning(
                "[CLEANUP]: Could not determine free disk space for '%s' (%s). Assuming 0 GB free.",
                path,
                exc,
            )
            return 0

    def free_gib(self, path: str | Path) -> int:
        return self.free_bytes(path) // GIB
