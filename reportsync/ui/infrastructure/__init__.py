"""Infrastructure: Qt signal bridge and notifications.

Keep this package import lightweight: do not import Qt GUI modules at import time.
Some headless CI environments have PySide6 installed but miss runtime GUI libs
(e.g. ``libGL.so.1``). Lazy exports below keep ``import reportsync.ui.infrastructure``
free of Qt initialization.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "JobSignals",
    "NotificationCenter",
    "bind_job_signals",
]


def __getattr__(name: str) -> Any:
    if name == "NotificationCenter":
        return import_module("reportsync.ui.infrastructure.notifications").NotificationCenter
    if name == "JobSignals":
        return import_module("reportsync.ui.infrastructure.signals").JobSignals
    if name == "bind_job_signals":
        return import_module("reportsync.ui.infrastructure.signals").bind_job_signals
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
