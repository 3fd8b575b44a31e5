from __future__ import annotations

import ctypes.util

import pytest

from reportsync.core.events import ConnectionStateChanged, EventBus, Notice
from reportsync.core.models import ConnectionState


def _require_qt() -> None:
    pytest.importorskip("PySide6")
    if ctypes.util.find_library("GL") is None:
        pytest.skip("PySide6 runtime is not fully available in this environment: libGL is missing")


def test_infrastructure_package_imports_without_qt() -> None:
    import reportsync.ui.infrastructure as infra

    assert "JobSignals" in infra.__all__
    with pytest.raises(AttributeError):
        _ = infra.Missing


def test_bus_events_become_signals() -> None:
    _require_qt()
    from reportsync.ui.infrastructure import JobSignals, bind_job_signals

    bus = EventBus()
    signals = JobSignals()
    states: list[str] = []
    notices: list[tuple[str, str, str]] = []
    signals.connection_changed.connect(states.append)
    signals.notice.connect(lambda level, summary, detail: notices.append((level, summary, detail)))

    unbind = bind_job_signals(bus, signals)
    bus.publish(ConnectionStateChanged(ConnectionState.OPEN))
    bus.publish(Notice("warning", "Status Update", "retrying"))
    unbind()
    bus.publish(ConnectionStateChanged(ConnectionState.CLOSED))

    assert states == ["OPEN"]
    assert notices == [("warning", "Status Update", "retrying")]


def test_notification_center_shows_notices_in_status_bar() -> None:
    _require_qt()
    from reportsync.ui.infrastructure import NotificationCenter

    class StatusBar:
        def __init__(self) -> None:
            self.messages: list[tuple[str, int]] = []

        def showMessage(self, text: str, ms: int) -> None:  # noqa: N802
            self.messages.append((text, ms))

    class Window:
        def __init__(self) -> None:
            self.bar = StatusBar()

        def statusBar(self) -> StatusBar:  # noqa: N802
            return self.bar

    window = Window()
    bus = EventBus()
    center = NotificationCenter(window)
    center.attach(bus)

    bus.publish(Notice("info", "Report Ready", "r.csv is ready to download"))
    center.detach()
    bus.publish(Notice("info", "ignored"))

    assert window.bar.messages == [("Report Ready: r.csv is ready to download", 4500)]
