from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    CONFIG = ("config", 1)
    UNSAFE_PATH = ("unsafe_path", 2)
    LOCK_HELD = ("lock_held", 7)
    LOCK_UNAVAILABLE = ("lock_unavailable", 10)
    INTERRUPTED = ("interrupted", 130)

    def __init__(self, label: str, exit_code: int):
        self.label = label
        self.exit_code = exit_code


class CleanupError(Exception):
    """Fatal cleanup failure. ``kind`` tells calling automation what went wrong."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code


class ConfigError(CleanupError):
    def __init__(self, message: str):
        super().__init__(ErrorKind.CONFIG, message)
