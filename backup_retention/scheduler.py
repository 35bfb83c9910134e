from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Mapping

from apscheduler.schedulers.background import BackgroundScheduler

from .config import Settings, load_run_config
from .errors import CleanupError
from .models import CleanupRunResult
from .run_all import discover_configs
from .runner import CleanupRunner


LOGGER = logging.getLogger("backup_retention")


class RetentionScheduler:
    def __init__(
        self,
        *,
        config_dir: str | Path,
        check_interval_seconds: int = 3600,
        environ: Mapping[str, str] | None = None,
        runner_factory: Callable[[Settings], CleanupRunner] = CleanupRunner,
    ):
        self.config_dir = Path(config_dir)
        self._check_interval_seconds = int(check_interval_seconds)
        self._environ = os.environ if environ is None else environ
        self._runner_factory = runner_factory
        self._results_lock = threading.Lock()
        self._last_results: dict[str, dict[str, Any]] = {}
        self._scheduler = BackgroundScheduler()
        self._running = False
        self._scheduler.add_job(self.run_once, "interval", seconds=self._check_interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_results(self) -> dict[str, dict[str, Any]]:
        with self._results_lock:
            return {key: dict(value) for key, value in self._last_results.items()}

    def start(self) -> None:
        if self._running:
            return
        self._scheduler.start()
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False

    def configs(self) -> list[Path]:
        if not self.config_dir.is_dir():
            LOGGER.warning("[CLEANUP]: Config directory '%s' does not exist.", self.config_dir)
            return []
        return discover_configs(self.config_dir)

    def run_config(self, config_path: str | Path, *, dry_run: bool = False) -> CleanupRunResult:
        """Run one cleanup now. Fatal errors are recorded and re-raised."""
        key = str(config_path)
        try:
            policy, settings = load_run_config(config_path=config_path, quiet=True, environ=self._environ)
            result = self._runner_factory(settings).run(policy, dry_run=dry_run)
        except CleanupError as exc:
            self._record(key, {"status": "error", "error": exc.kind.label, "message": exc.message})
            raise
        self._record(key, {"status": "ok", "result": result.to_dict()})
        return result

    def run_once(self) -> None:
        for config_path in self.configs():
            try:
                self.run_config(config_path)
            except CleanupError as exc:
                LOGGER.warning("[CLEANUP]: Cleanup for '%s' did not run: %s", config_path, exc.message)
            except Exception:
                self._record(str(config_path), {"status": "error", "error": "unexpected", "message": "see server log"})
                LOGGER.warning("[CLEANUP]: Cleanup failed for '%s'", config_path, exc_info=True)

    def _record(self, key: str, payload: dict[str, Any]) -> None:
        payload["finished_at"] = time.strftime("%Y-%m-%d %H:%M:%S")
        with self._results_lock:
            self._last_results[key] = payload
