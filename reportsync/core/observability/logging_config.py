"""Root logging setup for hosts embedding the sync engine.

Console output is plain text or one JSON object per line; a rotating plain
text file goes to the per-user state dir. Structured fields are passed with
``extra=`` (``job_id``, ``source``, ``status``, ``attempt``, ``state``,
``event``) and only show up in JSON output.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from reportsync.core.paths import get_app_state_dir

LOG_FILE_NAME = "reportsync.log"
_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_EXTRA_KEYS = ("event", "job_id", "source", "status", "attempt", "state")
_TRUTHY = {"1", "true", "yes", "on"}
# Per-request lines from the HTTP stack drown the poll loop at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),  # noqa: UP017
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = str(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _resolve_level(level: str | int | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    return int(getattr(logging, str(level).upper(), logging.INFO))


def _console_handler(json_logs: bool) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    if json_logs:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt="%H:%M:%S"))
    return handler


def _file_handler(state_dir: Path | None) -> logging.Handler | None:
    try:
        logs_dir = (state_dir or get_app_state_dir()) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            logs_dir / LOG_FILE_NAME,
            maxBytes=2 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
    except OSError:
        logging.getLogger(__name__).warning("File logging disabled: state dir not writable")
        return None
    handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    *,
    level: str | int | None = None,
    json_logs: bool | None = None,
    log_to_file: bool | None = None,
    state_dir: Path | None = None,
) -> None:
    """Configure the root logger, replacing any handlers already installed.

    Unset arguments fall back to ``LOG_LEVEL`` (default INFO), ``LOG_JSON``
    (default off) and ``LOG_FILE`` (default on).
    """

    if json_logs is None:
        json_logs = _env_flag("LOG_JSON", False)
    if log_to_file is None:
        log_to_file = _env_flag("LOG_FILE", True)

    handlers = [_console_handler(json_logs)]
    if log_to_file:
        file_handler = _file_handler(state_dir)
        if file_handler is not None:
            handlers.append(file_handler)

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(_resolve_level(level))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
