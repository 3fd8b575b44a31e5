"""Engine settings (JSON file + environment overrides).

Values go through a typed dataclass so that:

- missing keys fall back to defaults from ``reportsync.config``
- light type coercion is applied (e.g. "30" -> 30.0, "yes" -> True)
- unknown keys are ignored

Environment variables ``REPORTSYNC_<FIELD>`` (upper-case field name) win over
the file.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from reportsync import config

logger = logging.getLogger(__name__)


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "1", "yes", "y", "on"}:
            return True
        if v in {"false", "0", "no", "n", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        if isinstance(value, bool):
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        if isinstance(value, bool):
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


@dataclass(frozen=True)
class SyncSettings:
    api_base_url: str = config.DEFAULT_API_BASE_URL
    ws_url: str = config.DEFAULT_WS_URL

    reconnect_delay_sec: float = config.DEFAULT_RECONNECT_DELAY_SEC
    max_failed_reconnects: int = config.DEFAULT_MAX_FAILED_RECONNECTS
    heartbeat_ms: int = config.DEFAULT_HEARTBEAT_MS
    connect_timeout_sec: float = config.DEFAULT_CONNECT_TIMEOUT_SEC
    control_destination: str = config.CONTROL_DESTINATION
    updates_destination: str = config.UPDATES_DESTINATION

    poll_interval_sec: float = config.DEFAULT_POLL_INTERVAL_SEC
    fallback_poll_interval_sec: float = config.DEFAULT_FALLBACK_POLL_INTERVAL_SEC
    poll_request_timeout_sec: float = config.DEFAULT_POLL_REQUEST_TIMEOUT_SEC
    poll_max_failures: int = config.DEFAULT_POLL_MAX_FAILURES
    poll_backoff_sec: float = config.DEFAULT_POLL_BACKOFF_SEC
    poll_backoff_max_sec: float = config.DEFAULT_POLL_BACKOFF_MAX_SEC
    poll_backoff_jitter: float = config.DEFAULT_POLL_BACKOFF_JITTER
    push_silence_timeout_sec: float = config.DEFAULT_PUSH_SILENCE_TIMEOUT_SEC
    stop_polling_on_push: bool = False
    resume_tracking: bool = True

    list_refresh_sec: float = config.DEFAULT_LIST_REFRESH_SEC
    active_list_refresh_sec: float = config.DEFAULT_ACTIVE_LIST_REFRESH_SEC
    page_size: int = config.DEFAULT_PAGE_SIZE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SyncSettings:
        defaults = cls()
        if not isinstance(data, Mapping):
            return defaults
        values: dict[str, Any] = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            if f.name not in data:
                values[f.name] = default
                continue
            raw = data[f.name]
            if isinstance(default, bool):
                values[f.name] = _as_bool(raw, default)
            elif isinstance(default, int):
                values[f.name] = max(0, _as_int(raw, default))
            elif isinstance(default, float):
                values[f.name] = max(0.0, _as_float(raw, default))
            else:
                values[f.name] = _as_str(raw, default)
        if "{job_id}" not in values["updates_destination"]:
            logger.warning("updates_destination lacks {job_id}; using default")
            values["updates_destination"] = config.UPDATES_DESTINATION
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(SyncSettings):
        key = f"{config.ENV_PREFIX}{f.name.upper()}"
        if key in env:
            out[f.name] = env[key]
    return out


def load_settings(path: Path | None = None, env: Mapping[str, str] | None = None) -> SyncSettings:
    """Load settings from JSON (if present) and the environment.

    A missing or unreadable file yields defaults; it never raises.
    """
    p = path or config.SETTINGS_PATH
    data: dict[str, Any] = {}
    if p.exists():
        try:
            with open(p, encoding="utf-8") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data.update(loaded)
            else:
                logger.warning("Settings file %s is not a JSON object; ignoring", p)
        except (json.JSONDecodeError, OSError):
            logger.warning("Cannot read settings file %s; using defaults", p, exc_info=True)
    data.update(_env_overrides(os.environ if env is None else env))
    return SyncSettings.from_dict(data)


def save_settings(settings: SyncSettings, path: Path | None = None) -> None:
    p = path or config.SETTINGS_PATH
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
