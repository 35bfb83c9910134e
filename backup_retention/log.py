from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path


LOGGER = logging.getLogger("backup_retention")

LOG_FORMAT = "%(asctime)s - [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self._max_level


def configure_logging(*, log_file: Path | None, verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Attach file and console handlers to the package logger.

    Warnings and errors always reach stderr. INFO goes to stdout unless quiet;
    DEBUG only when verbose. The log file receives everything at or above the
    active level regardless of quiet.
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        handler.close()
    LOGGER.setLevel(level)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)
    LOGGER.addHandler(stderr_handler)

    if verbose or not quiet:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
        stdout_handler.setFormatter(formatter)
        LOGGER.addHandler(stdout_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            LOGGER.error("[CLEANUP]: Log file %s is not writable (%s). Logging to console only.", log_file, exc)
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            LOGGER.addHandler(file_handler)

    return LOGGER


def init_log(script_name: str, *, log_file: Path | None) -> None:
    if log_file is None:
        return
    header = (
        "\n----------------------------------------\n"
        f"Starting {script_name} at {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}\n"
        f"Log File: {log_file}\n"
        "----------------------------------------\n"
    )
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(header)
    except OSError as exc:
        LOGGER.warning("[CLEANUP]: Could not write log header to %s (%s)", log_file, exc)


def append_status(status_log: Path | None, status: str, message: str) -> None:
    if status_log is None:
        return
    timestamp = datetime.now().strftime(DATE_FORMAT)
    try:
        status_log.parent.mkdir(parents=True, exist_ok=True)
        with status_log.open("a", encoding="utf-8") as handle:
            handle.write(f"{timestamp} - [{status}] {message}\n")
    except OSError as exc:
        LOGGER.warning("[CLEANUP]: Could not append to status log %s (%s)", status_log, exc)


def read_status_tail(status_log: Path | None, limit: int = 50) -> list[str]:
    if status_log is None or not status_log.exists():
        return []
    lines = status_log.read_text(encoding="utf-8", errors="replace").splitlines()
    if limit <= 0:
        return []
    return lines[-limit:]


def human_readable_size(size_bytes: int | float) -> str:
    size = float(size_bytes or 0)
    unit_index = 0
    while size >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.1f}{_SIZE_UNITS[unit_index]}"


def format_duration(seconds: int | float) -> str:
    remaining = max(0, int(seconds))
    days, remaining = divmod(remaining, 86400)
    hours, remaining = divmod(remaining, 3600)
    minutes, remaining = divmod(remaining, 60)

    parts: list[str] = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0 or parts:
        parts.append(f"{hours}h")
    if minutes > 0 or parts:
        parts.append(f"{minutes}m")
    parts.append(f"{remaining}s")
    return " ".join(parts)
