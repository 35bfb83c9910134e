from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Mapping

from .config import load_run_config
from .errors import CleanupError, ErrorKind
from .log import append_status, configure_logging, init_log
from .runner import CleanupRunner


LOGGER = logging.getLogger("backup_retention")

SCRIPT_NAME = "remove-old-backups"


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser whose usage errors exit with the configuration error code."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(ErrorKind.CONFIG.exit_code, f"{self.prog}: error: {message}\n")


def parse_args(parser: argparse.ArgumentParser, argv: list[str] | None) -> tuple[argparse.Namespace | None, int]:
    """Return (args, 0), or (None, exit code) when parsing ended the command."""
    try:
        return parser.parse_args(argv), 0
    except SystemExit as exc:
        code = exc.code
        return None, code if isinstance(code, int) else ErrorKind.CONFIG.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog=SCRIPT_NAME,
        description="Remove old backup archives and oversized log files from a backup directory.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Site config file (.conf, .conf.gpg, .yaml). Values on the command line and in the environment win.",
    )
    parser.add_argument(
        "--target-dir",
        default=None,
        help="Directory to clean. Resolution: CLI -> BACKUP_TARGET_DIR env var -> fullPath in the config file",
    )
    parser.add_argument(
        "--mode",
        choices=["time", "space", "both"],
        default=None,
        help="Cleanup mode. Resolution: CLI -> CLEANUP_MODE env var -> config file -> time",
    )
    parser.add_argument(
        "--retain-days",
        type=int,
        default=None,
        help="Keep files modified within this many days (time/both modes)",
    )
    parser.add_argument(
        "--min-free-gib",
        type=int,
        default=None,
        help="Free-space target in GiB (space/both modes). Setting it enables disk free checks.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report what would be removed without deleting")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every candidate and decision")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress console output except warnings and errors")
    parser.add_argument("--no-notify", action="store_true", help="Do not send notifications")
    parser.add_argument("--lock-dir", default=None, help="Directory for the per-target lock file (default /var/lock)")
    parser.add_argument("--log-file", default=None, help="Log file path")
    parser.add_argument("--status-log", default=None, help="Status log path")
    return parser


def _cli_values(args: argparse.Namespace) -> dict[str, object]:
    values: dict[str, object] = {
        "target_dir": args.target_dir,
        "mode": args.mode,
        "retain_days": args.retain_days,
        "min_free_gib": args.min_free_gib,
        "lock_dir": args.lock_dir,
        "log_file": args.log_file,
        "status_log": args.status_log,
    }
    if args.min_free_gib is not None:
        values["disk_free_enabled"] = True
    return values


def main(argv: list[str] | None = None, *, environ: Mapping[str, str] | None = None) -> int:
    args, code = parse_args(build_parser(), argv)
    if args is None:
        return code
    env = os.environ if environ is None else environ

    # Console-only until the config tells us where the log file lives.
    configure_logging(log_file=None, verbose=args.verbose, quiet=args.quiet)

    status_log: Path | None = Path(args.status_log) if args.status_log else None
    try:
        policy, settings = load_run_config(
            config_path=args.config,
            cli_values=_cli_values(args),
            quiet=args.quiet,
            notify=not args.no_notify,
            environ=env,
        )
    except CleanupError as exc:
        LOGGER.error("[CLEANUP]: %s", exc.message)
        append_status(status_log, "FAILURE", exc.message)
        return exc.exit_code

    configure_logging(log_file=settings.log_file, verbose=args.verbose, quiet=args.quiet)
    init_log(SCRIPT_NAME, log_file=settings.log_file)
    if args.dry_run:
        LOGGER.info("[CLEANUP]: Dry run mode enabled. No files will be removed.")

    runner = CleanupRunner(settings)
    try:
        runner.run(policy, dry_run=args.dry_run, verbose=args.verbose)
    except CleanupError as exc:
        if exc.kind is ErrorKind.LOCK_HELD:
            LOGGER.warning("[CLEANUP]: %s", exc.message)
        else:
            LOGGER.error("[CLEANUP]: %s", exc.message)
        return exc.exit_code
    except KeyboardInterrupt:
        LOGGER.warning("[CLEANUP]: Cleanup interrupted.")
        return ErrorKind.INTERRUPTED.exit_code
    except Exception as exc:
        LOGGER.exception("[CLEANUP]: Cleanup failed for '%s'", policy.target_path)
        append_status(settings.status_log, "FAILURE", f"Cleanup failed for '{policy.target_path}': {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
