from __future__ import annotations

import logging
import os
import signal
import socket
import tempfile
import threading
import time
from datetime import datetime
from typing import Callable

from .config import Settings
from .disk import DiskSpaceProbe
from .engine import RetentionEngine
from .errors import CleanupError, ErrorKind
from .lock import RunLock
from .log import append_status, format_duration, human_readable_size
from .models import CategoryResult, CleanupMode, CleanupRunResult, FileCategory, RetentionPolicy
from .notify import Notifier
from .safety import require_safe
from .scanner import LOG_PATTERNS, archive_patterns, scan


LOGGER = logging.getLogger("backup_retention")

PROCESS_TYPE = "Backup Cleanup Report"

_NOT_INSTALLED = object()


def build_summary(
    result: CleanupRunResult,
    policy: RetentionPolicy,
    *,
    hostname: str,
    when: datetime,
) -> str:
    lines = [
        "Backup & Log Cleanup Summary",
        "============================",
        f"Date: {when.strftime('%a %b %d %H:%M:%S %Y')}",
        f"Host: {hostname}",
        f"Target Path: {policy.target_path}",
        f"Retention Period (for 'time'/'both' modes): {policy.retain_days} days",
        f"Cleanup Mode Selected: {policy.mode.value}",
    ]
    if result.dry_run:
        lines.append("Dry Run: yes (no files were removed)")
    if policy.disk_free_enabled:
        lines.append(f"Minimum Disk Free Target (if applicable): {policy.min_free_gib} GB")
    else:
        lines.append("Disk Free Space Target: Disabled")
    lines.extend(
        [
            "",
            f"Archives Removed: {result.archives_deleted_count}",
            f"Size Freed from Archives: {human_readable_size(result.archives_bytes_freed)}",
            f"Log Files Removed: {result.logs_deleted_count}",
            f"Size Freed from Logs: {human_readable_size(result.logs_bytes_freed)}",
            f"Total Size Freed: {human_readable_size(result.total_bytes_freed)}",
        ]
    )
    failed = result.archives.failed_count + result.logs.failed_count
    if failed:
        lines.append(f"Files That Could Not Be Removed: {failed}")
    lines.extend(
        [
            "",
            f"Disk Free Before Cleanup: {result.disk_free_before_gib} GB",
            f"Disk Free After Cleanup:  {result.disk_free_after_gib} GB",
            f"Time taken: {format_duration(result.duration_seconds)}",
        ]
    )
    return "\n".join(lines) + "\n"


def notification_message(result: CleanupRunResult) -> tuple[str, str]:
    prefix = "[Dry Run] " if result.dry_run else ""
    status = "INFO" if result.dry_run else "SUCCESS"
    message = (
        f"{prefix}Removed {result.archives_deleted_count} archives and {result.logs_deleted_count} logs "
        f"from '{result.target_path}'. Freed {human_readable_size(result.total_bytes_freed)}. "
        f"Mode: {result.mode.value}."
    )
    return status, message


class CleanupRunner:
    def __init__(
        self,
        settings: Settings,
        *,
        probe: DiskSpaceProbe | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        hostname: str | None = None,
    ):
        self._settings = settings
        self._probe = probe or DiskSpaceProbe()
        self._hostname = hostname or socket.gethostname()
        self._notifier = notifier or Notifier(settings.notifications, hostname=self._hostname)
        self._clock = clock
        self._term_armed = False

    def run(self, policy: RetentionPolicy, *, dry_run: bool = False, verbose: bool = False) -> CleanupRunResult:
        try:
            require_safe(policy.target_path, policy.safe_path_prefixes)
            lock = RunLock(lock_dir=self._settings.lock_dir, target_path=policy.target_path)
            lock.acquire()
        except CleanupError as exc:
            self._record_failure(exc)
            raise

        previous_handler = self._install_term_handler()
        try:
            self._term_armed = True
            result = self._run_locked(policy, dry_run=dry_run, verbose=verbose)
            self._term_armed = False
            return result
        except KeyboardInterrupt:
            message = f"Old backups removal for '{policy.target_path}' was interrupted."
            append_status(self._settings.status_log, "INTERRUPTED", message)
            LOGGER.warning("[CLEANUP]: %s", message)
            raise CleanupError(ErrorKind.INTERRUPTED, message) from None
        finally:
            self._term_armed = False
            self._restore_term_handler(previous_handler)
            lock.release()
            LOGGER.info("[CLEANUP]: Old backups removal finished for '%s'.", policy.target_path)

    def _run_locked(self, policy: RetentionPolicy, *, dry_run: bool, verbose: bool) -> CleanupRunResult:
        started_at = self._clock()
        engine = RetentionEngine(probe=self._probe, now=started_at)
        target = policy.target_path

        LOGGER.info("[CLEANUP]: Starting removal of old archive/log files in '%s'.", target)
        LOGGER.info(
            "[CLEANUP]: Cleanup Mode: '%s'. Retention: '%s' days. Disk Min Free: '%s' GB (Enabled: %s).%s",
            policy.mode.value,
            policy.retain_days,
            policy.min_free_gib,
            "y" if policy.disk_free_enabled else "n",
            " [Dry Run]" if dry_run else "",
        )
        append_status(self._settings.status_log, "STARTED", f"Removal of old backups/logs in '{target}'")

        result = CleanupRunResult(target_path=target, mode=policy.mode, dry_run=dry_run)
        result.disk_free_before_gib = self._probe.free_gib(target)
        LOGGER.info("[CLEANUP]: Disk space before cleanup: %s GB.", result.disk_free_before_gib)

        archive_min_age = policy.retain_days if policy.mode is CleanupMode.TIME else 0
        archives = scan(
            target,
            archive_patterns(policy.archive_extensions),
            category=FileCategory.ARCHIVE,
            min_age_days=archive_min_age,
            now=started_at,
        )
        result.archives = self._process("archive", archives, policy, engine, dry_run=dry_run, verbose=verbose)

        if policy.mode.uses_age:
            logs = scan(
                target,
                LOG_PATTERNS,
                category=FileCategory.LOG,
                min_age_days=archive_min_age,
                min_size_bytes=policy.max_log_size_bytes + 1,
                now=started_at,
            )
            result.logs = self._process("log", logs, policy, engine, dry_run=dry_run, verbose=verbose)
        else:
            LOGGER.info("[CLEANUP]: Log file cleanup skipped for CLEANUP_MODE='%s'.", policy.mode.value)

        result.disk_free_after_gib = self._probe.free_gib(target)
        LOGGER.info("[CLEANUP]: Disk space after cleanup: %s GB.", result.disk_free_after_gib)
        result.duration_seconds = max(0.0, self._clock() - started_at)

        self._report(result, policy)
        return result

    def _process(
        self,
        label: str,
        candidates: list,
        policy: RetentionPolicy,
        engine: RetentionEngine,
        *,
        dry_run: bool,
        verbose: bool,
    ) -> CategoryResult:
        if not candidates:
            LOGGER.info("[CLEANUP]: No %s files found matching criteria.", label)
            return CategoryResult()

        LOGGER.info("[CLEANUP]: Found %d %s files (initial candidates).", len(candidates), label)
        if verbose:
            for candidate in candidates:
                LOGGER.info(
                    "[CLEANUP]:   candidate %s (age %d days, %s)",
                    candidate.path,
                    candidate.age_days(engine.now),
                    human_readable_size(candidate.size_bytes),
                )

        outcome = engine.apply(candidates, policy, dry_run=dry_run)
        LOGGER.info(
            "[CLEANUP]: Processed %s files. Deleted: %d, Size Freed: %s.",
            label,
            outcome.deleted_count,
            human_readable_size(outcome.bytes_freed),
        )
        if outcome.failed_count:
            LOGGER.warning("[CLEANUP]: %d %s files could not be removed.", outcome.failed_count, label)
        return outcome

    def _report(self, result: CleanupRunResult, policy: RetentionPolicy) -> None:
        summary = build_summary(result, policy, hostname=self._hostname, when=datetime.now())
        LOGGER.info("[CLEANUP]: Cleanup summary:\n%s", summary)

        status, message = notification_message(result)
        summary_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", prefix="cleanup_summary_", suffix=".txt", delete=False, encoding="utf-8"
            ) as handle:
                handle.write(summary)
                summary_path = handle.name
        except OSError as exc:
            LOGGER.warning("[CLEANUP]: Could not write summary attachment: %s", exc)

        try:
            self._notifier.notify(status, message, PROCESS_TYPE, summary_path)
        finally:
            if summary_path:
                try:
                    os.unlink(summary_path)
                except OSError:
                    LOGGER.debug("[CLEANUP]: Could not remove temporary summary %s", summary_path)

        append_status(
            self._settings.status_log,
            "SUCCESS",
            f"{message} Duration: {format_duration(result.duration_seconds)}.",
        )

    def _record_failure(self, exc: CleanupError) -> None:
        append_status(self._settings.status_log, "FAILURE", exc.message)

    def _on_term(self, signum, frame) -> None:
        # Ignored once the run has finished its work.
        if self._term_armed:
            raise KeyboardInterrupt(f"signal {signum}")

    def _install_term_handler(self):
        if threading.current_thread() is not threading.main_thread():
            return _NOT_INSTALLED
        return signal.signal(signal.SIGTERM, self._on_term)

    @staticmethod
    def _restore_term_handler(previous) -> None:
        if previous is _NOT_INSTALLED:
            return
        signal.signal(signal.SIGTERM, signal.SIG_DFL if previous is None else previous)
