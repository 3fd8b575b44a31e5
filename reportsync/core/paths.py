from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from reportsync.config import PROJECT_ROOT

APP_NAME = "reportsync"


def get_app_state_dir(app_folder_name: str = ".reportsync") -> Path:
    """Return a writable directory for logs and downloads.

    Preference order:
    1) <PROJECT_ROOT>/.reportsync if writable (dev / tests)
    2) OS user data dir (~/.local/share/reportsync, %APPDATA%\\reportsync, ...)
    """
    proj_dir = PROJECT_ROOT / app_folder_name
    try:
        proj_dir.mkdir(parents=True, exist_ok=True)
        probe = proj_dir / ".write_test"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink(missing_ok=True)
        return proj_dir
    except OSError:
        logging.getLogger(__name__).debug(
            "Project dir probe failed; falling back to user data dir", exc_info=True
        )
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming")
        return (base / APP_NAME).resolve()
    if sys.platform == "darwin":
        return (Path.home() / "Library" / "Application Support" / APP_NAME).resolve()
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else (Path.home() / ".local" / "share")
    return (base / APP_NAME).resolve()


def get_downloads_dir() -> Path:
    return get_app_state_dir() / "downloads"
