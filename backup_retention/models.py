from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


SECONDS_PER_DAY = 86400
GIB = 1024 ** 3

DEFAULT_ARCHIVE_EXTENSIONS = ("zip", "tar", "tar.gz", "tgz", "gz", "bz2", "xz", "7z")
DEFAULT_MAX_LOG_SIZE_BYTES = 200 * 1024 * 1024


class CleanupMode(str, Enum):
    TIME = "time"
    SPACE = "space"
    BOTH = "both"

    @classmethod
    def parse(cls, value: str) -> "CleanupMode":
        normalized = str(value or "").strip().lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Invalid cleanup mode '{value}'. Allowed values: {[m.value for m in cls]}")

    @property
    def uses_age(self) -> bool:
        return self in (CleanupMode.TIME, CleanupMode.BOTH)

    @property
    def uses_free_space(self) -> bool:
        return self in (CleanupMode.SPACE, CleanupMode.BOTH)


class FileCategory(str, Enum):
    ARCHIVE = "archive"
    LOG = "log"


@dataclass(frozen=True)
class FileCandidate:
    path: Path
    modified_at: float
    size_bytes: int
    category: FileCategory

    def age_days(self, now: float) -> int:
        """Whole days elapsed since the last modification, rounded down."""
        return int(max(0.0, now - self.modified_at) // SECONDS_PER_DAY)


@dataclass
class RetentionPolicy:
    target_path: Path
    mode: CleanupMode = CleanupMode.TIME
    retain_days: int = 0
    disk_free_enabled: bool = False
    min_free_gib: int = 0
    max_log_size_bytes: int = DEFAULT_MAX_LOG_SIZE_BYTES
    archive_extensions: tuple[str, ...] = DEFAULT_ARCHIVE_EXTENSIONS
    safe_path_prefixes: tuple[Path, ...] = ()


@dataclass
class CategoryResult:
    deleted_count: int = 0
    bytes_freed: int = 0
    failed_count: int = 0


@dataclass
class CleanupRunResult:
    target_path: Path
    mode: CleanupMode
    dry_run: bool
    archives: CategoryResult = field(default_factory=CategoryResult)
    logs: CategoryResult = field(default_factory=CategoryResult)
    disk_free_before_gib: int = 0
    disk_free_after_gib: int = 0
    duration_seconds: float = 0.0

    @property
    def archives_deleted_count(self) -> int:
        return self.archives.deleted_count

    @property
    def archives_bytes_freed(self) -> int:
        return self.archives.bytes_freed

    @property
    def logs_deleted_count(self) -> int:
        return self.logs.deleted_count

    @property
    def logs_bytes_freed(self) -> int:
        return self.logs.bytes_freed

    @property
    def total_deleted_count(self) -> int:
        return self.archives.deleted_count + self.logs.deleted_count

    @property
    def total_bytes_freed(self) -> int:
        return self.archives.bytes_freed + self.logs.bytes_freed

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_path": str(self.target_path),
            "mode": self.mode.value,
            "dry_run": self.dry_run,
            "archives_deleted_count": self.archives_deleted_count,
            "archives_bytes_freed": self.archives_bytes_freed,
            "archives_failed_count": self.archives.failed_count,
            "logs_deleted_count": self.logs_deleted_count,
            "logs_bytes_freed": self.logs_bytes_freed,
            "logs_failed_count": self.logs.failed_count,
            "disk_free_before_gib": self.disk_free_before_gib,
            "disk_free_after_gib": self.disk_free_after_gib,
            "duration_seconds": round(self.duration_seconds, 3),
        }
