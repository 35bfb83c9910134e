from __future__ import annotations

from pathlib import Path

from flask import Blueprint, jsonify, request

from .config import parse_boolish
from .errors import CleanupError, ErrorKind
from .log import read_status_tail
from .scheduler import RetentionScheduler


HTTP_STATUS_BY_KIND = {
    ErrorKind.CONFIG: 400,
    ErrorKind.UNSAFE_PATH: 403,
    ErrorKind.LOCK_HELD: 409,
    ErrorKind.LOCK_UNAVAILABLE: 500,
    ErrorKind.INTERRUPTED: 500,
}


def _parse_run_payload(payload: dict, scheduler: RetentionScheduler) -> tuple[Path, bool]:
    config = str(payload.get("config") or "").strip()
    if not config:
        raise ValueError("config is required")

    known = {path.name: path for path in scheduler.configs()}
    candidate = Path(config)
    if candidate.name not in known or (candidate.is_absolute() and candidate != known[candidate.name]):
        raise ValueError(f"config '{config}' is not in {scheduler.config_dir}")

    dry_run = payload.get("dry_run", False)
    if not isinstance(dry_run, (bool, str)):
        raise ValueError("dry_run must be a boolean")
    return known[candidate.name], parse_boolish(dry_run, default=False)


def create_api_blueprint(*, scheduler: RetentionScheduler, status_log: Path | None) -> Blueprint:
    blueprint = Blueprint("backup_retention_api", __name__)

    @blueprint.get("/health")
    def health() -> tuple:
        return (
            jsonify(
                {
                    "status": "ok",
                    "scheduler_running": scheduler.is_running,
                }
            ),
            200,
        )

    @blueprint.get("/runs")
    def runs() -> tuple:
        return jsonify(scheduler.last_results), 200

    @blueprint.get("/status")
    def status() -> tuple:
        raw_limit = str(request.args.get("limit") or "50").strip()
        try:
            limit = int(raw_limit)
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        if limit < 1:
            return jsonify({"error": "limit must be >= 1"}), 400
        return jsonify({"lines": read_status_tail(status_log, limit)}), 200

    @blueprint.post("/run")
    def run() -> tuple:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "expected a JSON object"}), 400
        try:
            config_path, dry_run = _parse_run_payload(payload, scheduler)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        try:
            result = scheduler.run_config(config_path, dry_run=dry_run)
        except CleanupError as exc:
            return (
                jsonify({"error": exc.kind.label, "message": exc.message}),
                HTTP_STATUS_BY_KIND.get(exc.kind, 500),
            )
        return jsonify({"status": "ok", "result": result.to_dict()}), 200

    return blueprint
