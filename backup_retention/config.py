"""Configuration loading for cleanup runs.

Site config files are shared with the backup scripts and used to be sourced
as shell. They are now parsed as data: ``KEY="value"`` files through
python-dotenv, ``.conf.gpg`` files after ``gpg --decrypt``, and YAML mappings
through ``yaml.safe_load``. Only the keys listed in ``CONFIG_KEYS`` are read;
everything else in the file is ignored.

Each value resolves as: command line, then environment, then config file,
then the built-in default.
"""
from __future__ import annotations

import io
import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import dotenv_values

from .errors import ConfigError
from .lock import DEFAULT_LOCK_DIR
from .models import (
    DEFAULT_ARCHIVE_EXTENSIONS,
    DEFAULT_MAX_LOG_SIZE_BYTES,
    CleanupMode,
    RetentionPolicy,
)


LOGGER = logging.getLogger("backup_retention")

ENV_HOME = "BACKUP_RETENTION_HOME"
ENV_SAFE_PATHS = "BACKUP_RETENTION_SAFE_PATHS"

CONFIG_KEYS: dict[str, str] = {
    "fullPath": "target_dir",
    "BACKUP_RETAIN_DURATION": "retain_days",
    "CLEANUP_MODE": "mode",
    "DISK_FREE_ENABLE": "disk_free_enabled",
    "DISK_MIN_FREE_GB": "min_free_gib",
    "MAX_LOG_SIZE": "max_log_size_bytes",
    "ARCHIVE_EXTS": "archive_extensions",
    "LOCK_DIR": "lock_dir",
    "LOG_FILE": "log_file",
    "STATUS_LOG": "status_log",
    "NOTIFY_METHOD": "notify_method",
    "NOTIFY_EMAIL": "notify_email",
    "SLACK_WEBHOOK_URL": "slack_webhook_url",
    "SLACK_API_TOKEN": "slack_api_token",
    "SLACK_CHANNEL": "slack_channel",
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_CHAT_ID": "telegram_chat_id",
}

# Environment variable consulted for each field before the config file.
ENV_OVERRIDES: dict[str, str] = {
    "target_dir": "BACKUP_TARGET_DIR",
    "retain_days": "BACKUP_RETAIN_DURATION",
    "mode": "CLEANUP_MODE",
    "disk_free_enabled": "DISK_FREE_ENABLE",
    "min_free_gib": "DISK_MIN_FREE_GB",
    "max_log_size_bytes": "MAX_LOG_SIZE",
    "archive_extensions": "ARCHIVE_EXTS",
    "lock_dir": "BACKUP_RETENTION_LOCK_DIR",
    "log_file": "BACKUP_RETENTION_LOG_FILE",
    "status_log": "STATUS_LOG",
    "notify_method": "NOTIFY_METHOD",
    "notify_email": "NOTIFY_EMAIL",
    "slack_webhook_url": "SLACK_WEBHOOK_URL",
    "slack_api_token": "SLACK_API_TOKEN",
    "slack_channel": "SLACK_CHANNEL",
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_chat_id": "TELEGRAM_CHAT_ID",
}

_LIST_SPLIT = re.compile(r"[\s,]+")
_FIELD_NAMES = frozenset(CONFIG_KEYS.values())


@dataclass
class NotificationSettings:
    enabled: bool = True
    method: str = ""
    email: str = ""
    slack_webhook_url: str = ""
    slack_api_token: str = ""
    slack_channel: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    @property
    def methods(self) -> list[str]:
        if not self.enabled:
            return []
        return [item.strip().lower() for item in self.method.split(",") if item.strip()]


@dataclass
class Settings:
    base_dir: Path
    lock_dir: Path = DEFAULT_LOCK_DIR
    log_file: Path | None = None
    status_log: Path | None = None
    safe_path_prefixes: tuple[Path, ...] = ()
    quiet: bool = False
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


def parse_boolish(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value or "").strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item for item in _LIST_SPLIT.split(str(value).strip()) if item]


def _parse_non_negative_int(value: Any, *, key: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a non-negative integer, got '{value}'") from None
    if parsed < 0:
        raise ConfigError(f"'{key}' must be a non-negative integer, got '{value}'")
    return parsed


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def default_base_dir(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    raw = str(env.get(ENV_HOME) or "").strip()
    return Path(raw) if raw else Path.cwd()


def default_safe_paths(base_dir: Path) -> tuple[Path, ...]:
    return (
        Path("/var/backups"),
        Path("/home/backup"),
        base_dir / "backups",
        base_dir / "local_backups",
    )


def _decrypt_gpg(config_path: Path) -> str:
    try:
        result = subprocess.run(
            ["gpg", "--quiet", "--batch", "--decrypt", str(config_path)],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        raise ConfigError(f"gpg is not installed but required for encrypted config '{config_path}'") from None
    if result.returncode != 0 or not str(result.stdout or "").strip():
        detail = str(result.stderr or "").strip()
        raise ConfigError(
            f"Failed to decrypt or empty configuration file '{config_path}' (gpg exit {result.returncode}). {detail}".strip()
        )
    return str(result.stdout)


def _read_raw_config(config_path: Path) -> dict[str, Any]:
    name = config_path.name.lower()
    if name.endswith((".yaml", ".yml")):
        try:
            payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in '{config_path}': {exc}") from exc
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ConfigError(f"Configuration file '{config_path}' must contain a mapping")
        return {str(key): value for key, value in payload.items()}

    if name.endswith(".gpg"):
        text = _decrypt_gpg(config_path)
        return dict(dotenv_values(stream=io.StringIO(text), interpolate=False))

    return dict(dotenv_values(config_path, interpolate=False))


def load_config_file(config_path: str | Path) -> dict[str, Any]:
    """Return recognised settings from *config_path*, keyed by field name."""
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(f"Configuration file '{path}' not found.")

    raw = _read_raw_config(path)
    values: dict[str, Any] = {}
    ignored: list[str] = []
    for key, value in raw.items():
        field_name = CONFIG_KEYS.get(key) or (key if key in _FIELD_NAMES else None)
        if field_name is None:
            ignored.append(key)
            continue
        values[field_name] = value

    if ignored:
        LOGGER.debug("[CLEANUP]: Ignoring unrecognised keys in '%s': %s", path, ", ".join(sorted(ignored)))
    LOGGER.info("[CLEANUP]: Successfully loaded configuration from '%s'.", path)
    return values


def resolve_values(
    *,
    cli_values: Mapping[str, Any] | None = None,
    file_values: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    cli = dict(cli_values or {})
    from_file = dict(file_values or {})

    out: dict[str, Any] = {}
    for field_name in _FIELD_NAMES:
        if not _is_blank(cli.get(field_name)):
            out[field_name] = cli[field_name]
            continue
        env_name = ENV_OVERRIDES.get(field_name)
        env_value = env.get(env_name) if env_name else None
        if not _is_blank(env_value):
            out[field_name] = env_value
            continue
        if not _is_blank(from_file.get(field_name)):
            out[field_name] = from_file[field_name]
    return out


def build_settings(
    values: Mapping[str, Any],
    *,
    quiet: bool = False,
    notify: bool = True,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    env = os.environ if environ is None else environ
    base_dir = default_base_dir(env)

    safe_paths_raw = parse_list(env.get(ENV_SAFE_PATHS))
    safe_paths = tuple(Path(item) for item in safe_paths_raw) or default_safe_paths(base_dir)

    log_file = values.get("log_file")
    status_log = values.get("status_log")
    lock_dir = values.get("lock_dir")

    return Settings(
        base_dir=base_dir,
        lock_dir=Path(str(lock_dir)) if not _is_blank(lock_dir) else DEFAULT_LOCK_DIR,
        log_file=Path(str(log_file)) if not _is_blank(log_file) else base_dir / "logs" / "remove_old.log",
        status_log=(
            Path(str(status_log)) if not _is_blank(status_log) else base_dir / "logs" / "remove_old_status.log"
        ),
        safe_path_prefixes=safe_paths,
        quiet=bool(quiet),
        notifications=NotificationSettings(
            enabled=bool(notify),
            method=str(values.get("notify_method") or ""),
            email=str(values.get("notify_email") or ""),
            slack_webhook_url=str(values.get("slack_webhook_url") or ""),
            slack_api_token=str(values.get("slack_api_token") or ""),
            slack_channel=str(values.get("slack_channel") or ""),
            telegram_bot_token=str(values.get("telegram_bot_token") or ""),
            telegram_chat_id=str(values.get("telegram_chat_id") or ""),
        ),
    )


def build_policy(values: Mapping[str, Any], settings: Settings) -> RetentionPolicy:
    target_raw = values.get("target_dir")
    if _is_blank(target_raw):
        raise ConfigError("Required variable 'fullPath' (--target-dir) is not set.")
    target_path = Path(str(target_raw).strip())
    if not target_path.is_absolute():
        raise ConfigError(f"Target path '{target_raw}' must be an absolute path.")

    try:
        mode = CleanupMode.parse(str(values.get("mode") or CleanupMode.TIME.value))
    except ValueError as exc:
        raise ConfigError(str(exc)) from None

    retain_raw = values.get("retain_days")
    if _is_blank(retain_raw):
        if mode.uses_age:
            raise ConfigError(
                f"Required variable 'BACKUP_RETAIN_DURATION' (--retain-days) is not set for mode '{mode.value}'."
            )
        retain_days = 0
    else:
        retain_days = _parse_non_negative_int(retain_raw, key="BACKUP_RETAIN_DURATION")

    disk_free_raw = values.get("disk_free_enabled")
    disk_free_enabled = parse_boolish(disk_free_raw, default=False)

    min_free_raw = values.get("min_free_gib")
    if _is_blank(min_free_raw):
        if mode.uses_free_space and (disk_free_enabled or _is_blank(disk_free_raw)):
            raise ConfigError(
                f"Required variable 'DISK_MIN_FREE_GB' (--min-free-gib) is not set for mode '{mode.value}'."
            )
        min_free_gib = 0
    else:
        min_free_gib = _parse_non_negative_int(min_free_raw, key="DISK_MIN_FREE_GB")

    max_log_raw = values.get("max_log_size_bytes")
    max_log_size_bytes = (
        DEFAULT_MAX_LOG_SIZE_BYTES
        if _is_blank(max_log_raw)
        else _parse_non_negative_int(max_log_raw, key="MAX_LOG_SIZE")
    )

    extensions = tuple(item.lstrip(".").lower() for item in parse_list(values.get("archive_extensions")))

    return RetentionPolicy(
        target_path=target_path,
        mode=mode,
        retain_days=retain_days,
        disk_free_enabled=disk_free_enabled,
        min_free_gib=min_free_gib,
        max_log_size_bytes=max_log_size_bytes,
        archive_extensions=extensions or DEFAULT_ARCHIVE_EXTENSIONS,
        safe_path_prefixes=tuple(settings.safe_path_prefixes),
    )


def load_run_config(
    *,
    config_path: str | Path | None = None,
    cli_values: Mapping[str, Any] | None = None,
    quiet: bool = False,
    notify: bool = True,
    environ: Mapping[str, str] | None = None,
) -> tuple[RetentionPolicy, Settings]:
    file_values = load_config_file(config_path) if config_path else {}
    values = resolve_values(cli_values=cli_values, file_values=file_values, environ=environ)
    settings = build_settings(values, quiet=quiet, notify=notify, environ=environ)
    policy = build_policy(values, settings)
    return policy, settings
