import logging
import os

from flask import Flask

from .api import create_api_blueprint
from .config import build_settings, default_base_dir, resolve_values
from .scheduler import RetentionScheduler


def create_app() -> Flask:
    app = Flask(__name__)

    log_level = str(os.getenv("RETENTION_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))

    default_config_dir = default_base_dir() / "configs"
    config_dir = str(os.getenv("RETENTION_CONFIG_DIR") or default_config_dir)
    check_interval_seconds = int(str(os.getenv("RETENTION_CHECK_INTERVAL_SECONDS", "3600")))

    settings = build_settings(resolve_values())
    scheduler = RetentionScheduler(config_dir=config_dir, check_interval_seconds=check_interval_seconds)
    scheduler.start()

    app.register_blueprint(
        create_api_blueprint(scheduler=scheduler, status_log=settings.status_log),
        url_prefix="/api",
    )
    app.extensions["retention_scheduler"] = scheduler

    return app


def main() -> None:
    app = create_app()
    api_port = int(str(os.getenv("RETENTION_API_PORT", "9110")))
    app.run(host="0.0.0.0", port=api_port)


if __name__ == "__main__":
    main()
