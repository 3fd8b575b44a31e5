"""
Signal bridge: engine events become Qt signals.

The engine publishes on the event bus from the asyncio loop thread. Widgets
connect to these signals; with a queued connection the slots run on the GUI
thread.
"""

from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import QObject, Signal

from reportsync.core.events import (
    ConnectionStateChanged,
    EventBus,
    JobListChanged,
    JobUpdated,
    Notice,
)


class JobSignals(QObject):
    """Signals for job state, the job list and the push connection."""

    job_updated = Signal(object)  # Job
    job_list_changed = Signal(object)  # JobListView
    connection_changed = Signal(str)  # ConnectionState value
    notice = Signal(str, str, str)  # (level, summary, detail)


def bind_job_signals(bus: EventBus, signals: JobSignals) -> Callable[[], None]:
    """Forward bus events to signals. Returns a function that undoes the binding."""
    subs = [
        bus.subscribe(JobUpdated, lambda e: signals.job_updated.emit(e.job)),
        bus.subscribe(JobListChanged, lambda e: signals.job_list_changed.emit(e.view)),
        bus.subscribe(ConnectionStateChanged, lambda e: signals.connection_changed.emit(e.state.value)),
        bus.subscribe(Notice, lambda e: signals.notice.emit(e.level, e.summary, e.detail)),
    ]

    def _unbind() -> None:
        for sub in subs:
            bus.unsubscribe(sub)

    return _unbind
