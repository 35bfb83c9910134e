from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

from backup_retention import run_all


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("backup_retention")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


class FakeProcessPool:
    """Popen stand-in: each process finishes after a fixed number of polls."""

    def __init__(self, exit_codes: dict[str, int], polls_to_finish: int = 2):
        self.exit_codes = exit_codes
        self.polls_to_finish = polls_to_finish
        self.alive = 0
        self.max_alive = 0
        self.started: list[list[str]] = []

    def __call__(self, cmd):
        pool = self
        self.started.append(cmd)
        self.alive += 1
        self.max_alive = max(self.max_alive, self.alive)
        config_arg = cmd[cmd.index("-c") + 1] if "-c" in cmd else cmd[-1]
        name = Path(config_arg).name

        class _Proc:
            polls = 0

            def poll(self_inner):
                self_inner.polls += 1
                if self_inner.polls < pool.polls_to_finish:
                    return None
                if not getattr(self_inner, "done", False):
                    self_inner.done = True
                    pool.alive -= 1
                return pool.exit_codes.get(name, 0)

        return _Proc()


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("fullPath=/var/backups/x\n", encoding="utf-8")
    return path


def test_discover_configs_finds_supported_types_sorted(tmp_path: Path) -> None:
    for name in ("b.conf", "a.conf.gpg", "c.yaml", "d.yml", "notes.txt"):
        _touch(tmp_path / name)
    (tmp_path / "dir.conf").mkdir()

    assert [item.name for item in run_all.discover_configs(tmp_path)] == ["a.conf.gpg", "b.conf", "c.yaml", "d.yml"]


def test_project_name_strips_config_suffixes() -> None:
    assert run_all.project_name(Path("/c/site1.conf")) == "site1"
    assert run_all.project_name(Path("/c/site2.conf.gpg")) == "site2"
    assert run_all.project_name(Path("/c/site3.yaml")) == "site3"


def test_build_cleanup_cmd_passes_flags() -> None:
    cmd = run_all.build_cleanup_cmd(Path("/c/site1.conf"), dry_run=True, quiet=True)
    assert cmd == [sys.executable, "-m", "backup_retention.cli", "-c", "/c/site1.conf", "--dry-run", "--quiet"]


def test_run_configs_respects_parallel_limit_and_classifies_exits(tmp_path: Path) -> None:
    configs = [_touch(tmp_path / f"site{idx}.conf") for idx in range(5)]
    pool = FakeProcessPool({"site1.conf": 7, "site3.conf": 2}, polls_to_finish=3)

    summary = run_all.run_configs(
        configs,
        parallel=2,
        command_for=lambda config: ["cleanup", str(config)],
        popen=pool,
        poll_interval=0,
    )

    assert pool.max_alive == 2
    assert len(pool.started) == 5
    assert summary.total == 5
    assert [item.name for item in summary.succeeded] == ["site0.conf", "site2.conf", "site4.conf"]
    assert [item.name for item in summary.skipped] == ["site1.conf"]
    assert [(item.name, code) for item, code in summary.failed] == [("site3.conf", 2)]


def test_run_configs_rejects_invalid_parallel(tmp_path: Path) -> None:
    try:
        run_all.run_configs([], parallel=0, command_for=lambda config: [])
        assert False, "expected ValueError"
    except ValueError as exc:
        assert "parallel" in str(exc)


def test_main_exit_codes(monkeypatch, tmp_path: Path) -> None:
    environ = {"BACKUP_RETENTION_HOME": str(tmp_path)}
    config_dir = tmp_path / "configs"

    assert run_all.main([str(config_dir), "--no-notify", "-q"], environ=environ) == 1

    config_dir.mkdir()
    assert run_all.main([str(config_dir), "--no-notify", "-q"], environ=environ) == 0
    assert run_all.main([str(config_dir), "--no-notify", "-q", "-p", "0"], environ=environ) == 1
    assert run_all.main([str(config_dir), "--no-notify", "-q", "-p", "two"], environ=environ) == 1

    _touch(config_dir / "ok.conf")
    _touch(config_dir / "busy.conf")
    monkeypatch.setattr(run_all.subprocess, "Popen", FakeProcessPool({"busy.conf": 7}))
    monkeypatch.setattr(run_all, "POLL_INTERVAL_SECONDS", 0)
    assert run_all.main([str(config_dir), "--no-notify", "-q", "-p", "2"], environ=environ) == 0

    _touch(config_dir / "broken.conf")
    monkeypatch.setattr(run_all.subprocess, "Popen", FakeProcessPool({"broken.conf": 1}))
    assert run_all.main([str(config_dir), "--no-notify", "-q"], environ=environ) == 1
    status_lines = (tmp_path / "logs" / "remove_old_status.log").read_text(encoding="utf-8").splitlines()
    assert "[FAILURE]" in status_lines[-1]
    assert "broken" in status_lines[-1]


def test_main_argument_errors_exit_one(tmp_path: Path, capsys) -> None:
    environ = {"BACKUP_RETENTION_HOME": str(tmp_path)}

    assert run_all.main(["--bogus-flag"], environ=environ) == 1
    assert run_all.main(["-p"], environ=environ) == 1
    assert "usage: remove-old-backups-all" in capsys.readouterr().err


def test_main_help_does_not_read_settings(monkeypatch, capsys) -> None:
    def _fail(*args, **kwargs):
        raise AssertionError("settings built before argument parsing")

    monkeypatch.setattr(run_all, "build_settings", _fail)
    monkeypatch.setattr(run_all, "resolve_values", _fail)

    assert run_all.main(["--help"]) == 0
    assert "usage: remove-old-backups-all" in capsys.readouterr().out
