"""Notification fan-out for cleanup reports.

Each configured channel gets one request. Delivery problems are logged and
never raised: a failed notification must not fail the cleanup run.
"""
from __future__ import annotations

import logging
import re
import socket
import subprocess
from datetime import datetime
from pathlib import Path

import requests

from .config import NotificationSettings


LOGGER = logging.getLogger("backup_retention")

SLACK_FILES_UPLOAD_URL = "https://slack.com/api/files.upload"
TELEGRAM_API_BASE = "https://api.telegram.org"
REQUEST_TIMEOUT_SECONDS = 15

_TELEGRAM_ESCAPE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_telegram_markdown(text: str) -> str:
    return _TELEGRAM_ESCAPE.sub(r"\\\1", text)


def build_email_cmd(*, subject: str, recipient: str, attachment_path: Path | None = None) -> list[str]:
    cmd = ["mail", "-s", subject]
    if attachment_path is not None:
        cmd.extend(["-a", str(attachment_path)])
    cmd.append(recipient)
    return cmd


class Notifier:
    def __init__(self, settings: NotificationSettings, *, hostname: str | None = None):
        self._settings = settings
        self._hostname = hostname or socket.gethostname()

    @property
    def enabled(self) -> bool:
        methods = self._settings.methods
        return bool(methods) and methods != ["none"]

    def notify(
        self,
        status: str,
        message: str,
        process_type: str,
        attachment_path: str | Path | None = None,
    ) -> bool:
        """Send *message* through every configured channel.

        Returns True only when all channels accepted the message.
        """
        if not self.enabled:
            LOGGER.debug("[CLEANUP]: No notification method configured. Skipping notifications.")
            return True

        attachment = Path(attachment_path) if attachment_path else None
        if attachment is not None and not attachment.is_file():
            attachment = None

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        delivered = True
        for method in self._settings.methods:
            try:
                if method == "email":
                    ok = self._send_email(status, message, process_type, timestamp, attachment)
                elif method == "slack":
                    ok = self._send_slack(status, message, process_type, timestamp, attachment)
                elif method == "telegram":
                    ok = self._send_telegram(status, message, process_type, timestamp, attachment)
                elif method == "none":
                    continue
                else:
                    LOGGER.warning("[CLEANUP]: Unknown notification method: %s", method)
                    ok = False
            except (OSError, requests.RequestException) as exc:
                LOGGER.warning("[CLEANUP]: %s notification failed: %s", method, exc)
                ok = False
            delivered = delivered and ok
        return delivered

    def _send_email(
        self,
        status: str,
        message: str,
        process_type: str,
        timestamp: str,
        attachment: Path | None,
    ) -> bool:
        recipient = self._settings.email.strip()
        if not recipient:
            LOGGER.warning("[CLEANUP]: Email notification method enabled, but NOTIFY_EMAIL is not set.")
            return False

        body = f"[{status}] {process_type} Process on {self._hostname} at {timestamp}\n\n{message}\n"
        cmd = build_email_cmd(
            subject=f"[{status}] {process_type} on {self._hostname}",
            recipient=recipient,
            attachment_path=attachment,
        )
        result = subprocess.run(cmd, input=body, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            detail = str(result.stderr or "").strip() or str(result.stdout or "").strip()
            LOGGER.warning("[CLEANUP]: mail exited with %s: %s", result.returncode, detail)
            return False
        LOGGER.info("[CLEANUP]: Email notification sent to %s", recipient)
        return True

    def _send_slack(
        self,
        status: str,
        message: str,
        process_type: str,
        timestamp: str,
        attachment: Path | None,
    ) -> bool:
        webhook_url = self._settings.slack_webhook_url.strip()
        if not webhook_url:
            LOGGER.warning("[CLEANUP]: Slack notification method enabled, but SLACK_WEBHOOK_URL is not set.")
            return False

        text = f"*[{status}] {process_type} Process on {self._hostname}* ({timestamp})\n{message}"
        response = requests.post(webhook_url, json={"text": text}, timeout=REQUEST_TIMEOUT_SECONDS)
        if response.status_code < 200 or response.status_code >= 300:
            LOGGER.warning("[CLEANUP]: Slack webhook returned HTTP %s: %s", response.status_code, response.text)
            return False

        if attachment is not None:
            token = self._settings.slack_api_token.strip()
            channel = self._settings.slack_channel.strip()
            if token and channel:
                with attachment.open("rb") as handle:
                    requests.post(
                        SLACK_FILES_UPLOAD_URL,
                        headers={"Authorization": f"Bearer {token}"},
                        data={"channels": channel, "initial_comment": f"[{status}] {process_type}: {message}"},
                        files={"file": handle},
                        timeout=REQUEST_TIMEOUT_SECONDS,
                    )
                LOGGER.info("[CLEANUP]: Slack attachment upload attempted.")
            else:
                LOGGER.warning("[CLEANUP]: Slack attachment specified, but SLACK_API_TOKEN or SLACK_CHANNEL is not set.")

        LOGGER.info("[CLEANUP]: Slack notification sent.")
        return True

    def _send_telegram(
        self,
        status: str,
        message: str,
        process_type: str,
        timestamp: str,
        attachment: Path | None,
    ) -> bool:
        token = self._settings.telegram_bot_token.strip()
        chat_id = self._settings.telegram_chat_id.strip()
        if not token or not chat_id:
            LOGGER.warning(
                "[CLEANUP]: Telegram notification method enabled, but TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID is not set."
            )
            return False

        base = f"{TELEGRAM_API_BASE}/bot{token}"
        text = escape_telegram_markdown(f"[{status}] {process_type} Process on {self._hostname}\n{timestamp}\n\n{message}")
        response = requests.post(
            f"{base}/sendMessage",
            data={"chat_id": chat_id, "text": text, "parse_mode": "MarkdownV2"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if response.status_code < 200 or response.status_code >= 300:
            LOGGER.warning("[CLEANUP]: Telegram sendMessage returned HTTP %s: %s", response.status_code, response.text)
            return False

        if attachment is not None:
            with attachment.open("rb") as handle:
                requests.post(
                    f"{base}/sendDocument",
                    data={"chat_id": chat_id, "caption": f"[{status}] {process_type}: {message}"},
                    files={"document": handle},
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            LOGGER.info("[CLEANUP]: Telegram attachment upload attempted.")

        LOGGER.info("[CLEANUP]: Telegram notification sent.")
        return True
