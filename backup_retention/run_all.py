from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .cli import ArgumentParser, parse_args
from .config import build_settings, resolve_values
from .errors import ErrorKind
from .log import append_status, configure_logging, format_duration, init_log
from .notify import Notifier


LOGGER = logging.getLogger("backup_retention")

SCRIPT_NAME = "remove-old-backups-all"
CONFIG_PATTERNS = ("*.conf", "*.conf.gpg", "*.yaml", "*.yml")
POLL_INTERVAL_SECONDS = 0.5


@dataclass
class RunAllSummary:
    succeeded: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, int]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.skipped) + len(self.failed)

    def record(self, config: Path, returncode: int) -> None:
        if returncode == 0:
            self.succeeded.append(config)
        elif returncode == ErrorKind.LOCK_HELD.exit_code:
            self.skipped.append(config)
        else:
            self.failed.append((config, returncode))


def discover_configs(config_dir: str | Path) -> list[Path]:
    root = Path(config_dir)
    found: set[Path] = set()
    for pattern in CONFIG_PATTERNS:
        found.update(item for item in root.glob(pattern) if item.is_file())
    return sorted(found)


def project_name(config: Path) -> str:
    name = config.name
    for suffix in (".conf.gpg", ".conf", ".yaml", ".yml"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def build_cleanup_cmd(config: Path, *, dry_run: bool = False, verbose: bool = False, quiet: bool = False) -> list[str]:
    cmd = [sys.executable, "-m", "backup_retention.cli", "-c", str(config)]
    if dry_run:
        cmd.append("--dry-run")
    if verbose:
        cmd.append("--verbose")
    if quiet:
        cmd.append("--quiet")
    return cmd


def run_configs(
    configs: Sequence[Path],
    *,
    parallel: int,
    command_for: Callable[[Path], list[str]],
    popen: Callable[..., subprocess.Popen] | None = None,
    poll_interval: float | None = None,
) -> RunAllSummary:
    """Run one cleanup process per config with at most *parallel* alive at once."""
    if parallel < 1:
        raise ValueError("parallel must be >= 1")
    spawn = popen or subprocess.Popen
    interval = POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval

    summary = RunAllSummary()
    pending = list(configs)
    running: list[tuple[Path, subprocess.Popen]] = []

    while pending or running:
        while pending and len(running) < parallel:
            config = pending.pop(0)
            LOGGER.info("[CLEANUP]: Cleaning project '%s' with config '%s'.", project_name(config), config)
            running.append((config, spawn(command_for(config))))

        still_running: list[tuple[Path, subprocess.Popen]] = []
        for config, proc in running:
            returncode = proc.poll()
            if returncode is None:
                still_running.append((config, proc))
                continue
            summary.record(config, int(returncode))
            if returncode == 0:
                LOGGER.info("[CLEANUP]: Cleanup for '%s' completed.", project_name(config))
            elif returncode == ErrorKind.LOCK_HELD.exit_code:
                LOGGER.warning("[CLEANUP]: Cleanup for '%s' skipped: already running.", project_name(config))
            else:
                LOGGER.error("[CLEANUP]: Cleanup for '%s' failed with exit code %s.", project_name(config), returncode)
        running = still_running

        if running and (len(running) >= parallel or not pending):
            time.sleep(interval)

    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog=SCRIPT_NAME,
        description="Run backup cleanup for every site config in a directory.",
    )
    parser.add_argument(
        "config_dir",
        nargs="?",
        default=None,
        help="Directory containing site config files (default: ./configs)",
    )
    parser.add_argument("-p", "--parallel", default="1", help="Number of cleanups to run at once (default: 1)")
    parser.add_argument("--dry-run", action="store_true", help="Pass --dry-run to every cleanup")
    parser.add_argument("-v", "--verbose", action="store_true", help="Pass --verbose to every cleanup")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress console output except warnings and errors")
    parser.add_argument("--no-notify", action="store_true", help="Do not send the aggregate notification")
    return parser


def main(argv: list[str] | None = None, *, environ: Mapping[str, str] | None = None) -> int:
    args, code = parse_args(build_parser(), argv)
    if args is None:
        return code
    env = os.environ if environ is None else environ
    settings = build_settings(resolve_values(environ=env), environ=env)

    log_file = settings.base_dir / "logs" / "remove_old_all.log"
    configure_logging(log_file=log_file, verbose=args.verbose, quiet=args.quiet)
    init_log(SCRIPT_NAME, log_file=log_file)

    settings.notifications.enabled = not args.no_notify
    notifier = Notifier(settings.notifications)

    def fail(message: str) -> int:
        LOGGER.error("[CLEANUP]: %s", message)
        append_status(settings.status_log, "FAILURE", message)
        notifier.notify("FAILURE", message, "Cleanup All")
        return 1

    try:
        parallel = int(str(args.parallel).strip())
    except ValueError:
        parallel = 0
    if parallel < 1:
        return fail(f"Invalid number of parallel jobs '{args.parallel}'.")

    config_dir = Path(args.config_dir) if args.config_dir else settings.base_dir / "configs"
    if not config_dir.is_dir():
        return fail(f"Configuration directory '{config_dir}' not found.")

    configs = discover_configs(config_dir)
    if not configs:
        LOGGER.info("[CLEANUP]: No config files found in '%s'.", config_dir)
        return 0

    LOGGER.info("[CLEANUP]: Found %d configuration files. Running with %d parallel jobs.", len(configs), parallel)
    append_status(settings.status_log, "STARTED", f"Cleanup for all sites in '{config_dir}'")
    started_at = time.time()

    summary = run_configs(
        configs,
        parallel=parallel,
        command_for=lambda config: build_cleanup_cmd(
            config, dry_run=args.dry_run, verbose=args.verbose, quiet=args.quiet
        ),
    )

    duration = format_duration(time.time() - started_at)
    message = (
        f"Cleanup finished for {summary.total} sites: {len(summary.succeeded)} succeeded, "
        f"{len(summary.skipped)} skipped, {len(summary.failed)} failed. Duration: {duration}."
    )
    if summary.failed:
        failed_names = ", ".join(project_name(config) for config, _ in summary.failed)
        message = f"{message} Failed: {failed_names}."
        LOGGER.error("[CLEANUP]: %s", message)
        append_status(settings.status_log, "FAILURE", message)
        notifier.notify("FAILURE", message, "Cleanup All")
        return 1

    LOGGER.info("[CLEANUP]: %s", message)
    append_status(settings.status_log, "SUCCESS", message)
    notifier.notify("INFO" if args.dry_run else "SUCCESS", message, "Cleanup All")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
