from __future__ import annotations

import os
import signal
import time
from datetime import datetime
from pathlib import Path

from backup_retention.config import NotificationSettings, Settings
from backup_retention.errors import CleanupError, ErrorKind
from backup_retention.lock import RunLock
from backup_retention.models import GIB, CleanupMode, RetentionPolicy
from backup_retention.runner import CleanupRunner, build_summary


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[str, str, str, bool]] = []

    def notify(self, status, message, process_type, attachment_path=None) -> bool:
        has_attachment = attachment_path is not None and Path(attachment_path).is_file()
        self.calls.append((status, message, process_type, has_attachment))
        return True


class StaticProbe:
    def __init__(self, free_bytes: int):
        self.value = free_bytes

    def free_bytes(self, path) -> int:
        return self.value

    def free_gib(self, path) -> int:
        return self.value // GIB


class ShrinkingDirProbe:
    """Free space rises by the bytes removed from the watched directory."""

    def __init__(self, directory: Path, base_free_bytes: int):
        self.directory = directory
        self.base = base_free_bytes
        self.initial = self._used()

    def _used(self) -> int:
        return sum(item.stat().st_size for item in self.directory.iterdir() if item.is_file())

    def free_bytes(self, path) -> int:
        return self.base + (self.initial - self._used())

    def free_gib(self, path) -> int:
        return self.free_bytes(path) // GIB


def _write_file(path: Path, size: int, *, age_days: float = 0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    if age_days:
        stamp = time.time() - age_days * 86400
        os.utime(path, (stamp, stamp))
    return path


def _settings(tmp_path: Path) -> Settings:
    lock_dir = tmp_path / "lock"
    lock_dir.mkdir(exist_ok=True)
    return Settings(
        base_dir=tmp_path,
        lock_dir=lock_dir,
        log_file=None,
        status_log=tmp_path / "logs" / "status.log",
        safe_path_prefixes=(tmp_path / "backups",),
        notifications=NotificationSettings(enabled=False),
    )


def _policy(target: Path, **overrides) -> RetentionPolicy:
    values = {
        "target_path": target,
        "mode": CleanupMode.TIME,
        "retain_days": 30,
        "max_log_size_bytes": 100,
        "safe_path_prefixes": (target.parent,),
    }
    values.update(overrides)
    return RetentionPolicy(**values)


def test_time_mode_run_removes_old_archives_and_big_old_logs(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "old.zip", 10, age_days=40)
    _write_file(target / "new.zip", 10, age_days=2)
    _write_file(target / "old-big.log", 500, age_days=40)
    _write_file(target / "old-small.log", 50, age_days=40)
    _write_file(target / "new-big.log", 500, age_days=2)

    notifier = RecordingNotifier()
    runner = CleanupRunner(_settings(tmp_path), probe=StaticProbe(20 * GIB), notifier=notifier, hostname="web1")
    result = runner.run(_policy(target))

    assert result.archives_deleted_count == 1
    assert result.archives_bytes_freed == 10
    assert result.logs_deleted_count == 1
    assert result.logs_bytes_freed == 500
    assert sorted(item.name for item in target.iterdir()) == ["new-big.log", "new.zip", "old-small.log"]
    assert result.disk_free_before_gib == 20
    assert result.disk_free_after_gib == 20

    assert len(notifier.calls) == 1
    status, message, process_type, has_attachment = notifier.calls[0]
    assert status == "SUCCESS"
    assert "Removed 1 archives and 1 logs" in message
    assert process_type == "Backup Cleanup Report"
    assert has_attachment is True

    status_lines = (tmp_path / "logs" / "status.log").read_text(encoding="utf-8").splitlines()
    assert "[STARTED]" in status_lines[0]
    assert "[SUCCESS]" in status_lines[-1]


def test_space_mode_run_leaves_logs_alone(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "a.zip", 100, age_days=3)
    _write_file(target / "b.zip", 100, age_days=2)
    _write_file(target / "huge.log", 5000, age_days=400)

    policy = _policy(target, mode=CleanupMode.SPACE, disk_free_enabled=True, min_free_gib=10)
    probe = ShrinkingDirProbe(target, 10 * GIB - 150)
    runner = CleanupRunner(_settings(tmp_path), probe=probe, notifier=RecordingNotifier(), hostname="web1")

    result = runner.run(policy)

    assert result.archives_deleted_count == 2
    assert result.logs_deleted_count == 0
    assert (target / "huge.log").exists()


def test_unsafe_target_aborts_before_scanning(monkeypatch, tmp_path: Path) -> None:
    scanned: list[object] = []
    monkeypatch.setattr("backup_retention.runner.scan", lambda *args, **kwargs: scanned.append(args) or [])

    runner = CleanupRunner(_settings(tmp_path), probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")
    policy = _policy(Path("/etc"), safe_path_prefixes=(Path("/var/backups"),))

    try:
        runner.run(policy)
        assert False, "expected CleanupError"
    except CleanupError as exc:
        assert exc.kind is ErrorKind.UNSAFE_PATH
        assert exc.exit_code == 2

    assert scanned == []
    assert "[FAILURE]" in (tmp_path / "logs" / "status.log").read_text(encoding="utf-8")


def test_second_run_on_locked_target_fails_fast(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "old.zip", 10, age_days=40)
    settings = _settings(tmp_path)

    with RunLock(lock_dir=settings.lock_dir, target_path=target):
        runner = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")
        try:
            runner.run(_policy(target))
            assert False, "expected CleanupError"
        except CleanupError as exc:
            assert exc.kind is ErrorKind.LOCK_HELD
            assert exc.exit_code == 7

    assert (target / "old.zip").exists()

    result = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1").run(
        _policy(target)
    )
    assert result.archives_deleted_count == 1


def test_missing_lock_directory_reports_lock_unavailable(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    target.mkdir(parents=True)
    settings = _settings(tmp_path)
    settings.lock_dir = tmp_path / "no-such-dir"

    try:
        CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1").run(
            _policy(target)
        )
        assert False, "expected CleanupError"
    except CleanupError as exc:
        assert exc.kind is ErrorKind.LOCK_UNAVAILABLE
        assert exc.exit_code == 10


def test_dry_run_reports_real_numbers_without_deleting(tmp_path: Path) -> None:
    dry_target = tmp_path / "backups" / "dry"
    real_target = tmp_path / "backups" / "real"
    for target in (dry_target, real_target):
        _write_file(target / "a.zip", 100, age_days=50)
        _write_file(target / "b.zip", 200, age_days=45)
        _write_file(target / "c.zip", 300, age_days=5)

    settings = _settings(tmp_path)
    dry_notifier = RecordingNotifier()
    dry = CleanupRunner(settings, probe=StaticProbe(GIB), notifier=dry_notifier, hostname="web1").run(
        _policy(dry_target), dry_run=True
    )
    real = CleanupRunner(settings, probe=StaticProbe(GIB), notifier=RecordingNotifier(), hostname="web1").run(
        _policy(real_target)
    )

    assert dry.total_deleted_count == real.total_deleted_count == 2
    assert dry.total_bytes_freed == real.total_bytes_freed == 300
    assert len(list(dry_target.iterdir())) == 3
    assert len(list(real_target.iterdir())) == 1

    status, message, _, _ = dry_notifier.calls[0]
    assert status == "INFO"
    assert message.startswith("[Dry Run] ")


def test_interrupt_releases_lock_and_records_status(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    target.mkdir(parents=True)
    settings = _settings(tmp_path)

    class InterruptingProbe(StaticProbe):
        def free_bytes(self, path) -> int:
            raise KeyboardInterrupt

    runner = CleanupRunner(settings, probe=InterruptingProbe(0), notifier=RecordingNotifier(), hostname="web1")
    try:
        runner.run(_policy(target))
        assert False, "expected CleanupError"
    except CleanupError as exc:
        assert exc.kind is ErrorKind.INTERRUPTED
        assert exc.exit_code == 130

    lock = RunLock(lock_dir=settings.lock_dir, target_path=target)
    lock.acquire()
    assert lock.is_held is True
    lock.release()
    assert "[INTERRUPTED]" in settings.status_log.read_text(encoding="utf-8")


def test_lock_is_shared_by_aliases_of_one_target(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "old.zip", 10, age_days=40)
    alias = tmp_path / "backups" / "alias"
    alias.symlink_to(target, target_is_directory=True)
    dotted = tmp_path / "backups" / "." / "site1" / ".." / "site1"
    settings = _settings(tmp_path)

    with RunLock(lock_dir=settings.lock_dir, target_path=target):
        for spelling in (alias, dotted):
            try:
                RunLock(lock_dir=settings.lock_dir, target_path=spelling).acquire()
                assert False, "expected CleanupError"
            except CleanupError as exc:
                assert exc.kind is ErrorKind.LOCK_HELD

        runner = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")
        try:
            runner.run(_policy(dotted, safe_path_prefixes=(tmp_path / "backups",)))
            assert False, "expected CleanupError"
        except CleanupError as exc:
            assert exc.kind is ErrorKind.LOCK_HELD

    assert (target / "old.zip").exists()


def test_run_restores_previous_term_handler(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    target.mkdir(parents=True)
    settings = _settings(tmp_path)

    def custom_handler(signum, frame):
        pass

    original = signal.signal(signal.SIGTERM, custom_handler)
    try:
        runner = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")
        runner.run(_policy(target))
        assert signal.getsignal(signal.SIGTERM) is custom_handler
    finally:
        signal.signal(signal.SIGTERM, original)


def test_term_after_work_finished_does_not_interrupt(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "old.zip", 10, age_days=40)
    settings = _settings(tmp_path)
    runner = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")

    result = runner.run(_policy(target))

    # A late signal is a no-op once the run is done.
    runner._on_term(signal.SIGTERM, None)
    assert result.archives_deleted_count == 1
    assert "[INTERRUPTED]" not in settings.status_log.read_text(encoding="utf-8")


def test_term_during_work_interrupts(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    target.mkdir(parents=True)
    settings = _settings(tmp_path)
    runner = CleanupRunner(settings, probe=StaticProbe(0), notifier=RecordingNotifier(), hostname="web1")

    class TermProbe(StaticProbe):
        def free_bytes(self, path) -> int:
            runner._on_term(signal.SIGTERM, None)
            return 0

        def free_gib(self, path) -> int:
            return self.free_bytes(path)

    runner._probe = TermProbe(0)
    try:
        runner.run(_policy(target))
        assert False, "expected CleanupError"
    except CleanupError as exc:
        assert exc.kind is ErrorKind.INTERRUPTED


def test_build_summary_lists_counts_and_disk_figures(tmp_path: Path) -> None:
    target = tmp_path / "backups" / "site1"
    _write_file(target / "old.zip", 2048, age_days=40)
    runner = CleanupRunner(_settings(tmp_path), probe=StaticProbe(3 * GIB), notifier=RecordingNotifier(), hostname="web1")
    result = runner.run(_policy(target))

    summary = build_summary(result, _policy(target), hostname="web1", when=datetime(2024, 1, 2, 3, 4, 5))

    assert "Host: web1" in summary
    assert "Archives Removed: 1" in summary
    assert "Size Freed from Archives: 2.0KB" in summary
    assert "Disk Free Space Target: Disabled" in summary
    assert "Disk Free Before Cleanup: 3 GB" in summary
