from __future__ import annotations

import logging

from reportsync.core.events import EventBus, Notice, Subscription

try:
    from PySide6.QtWidgets import QMessageBox
except Exception:  # pragma: no cover
    QMessageBox = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Shows engine notices in the window.

    Short status-bar messages for everything; persistent errors also open a
    message box.
    """

    def __init__(self, window) -> None:
        self._window = window
        self._sub: Subscription | None = None
        self._bus: EventBus | None = None

    def attach(self, bus: EventBus) -> None:
        self.detach()
        self._bus = bus
        self._sub = bus.subscribe_weak(Notice, self.show)

    def detach(self) -> None:
        if self._bus is not None and self._sub is not None:
            self._bus.unsubscribe(self._sub)
        self._bus = None
        self._sub = None

    def show(self, notice: Notice) -> None:
        text = self._join_message(notice.summary, notice.detail or None)
        self._status(text, ms=0 if notice.persistent else 4500)
        if notice.level == "error" and notice.persistent:
            self._alert(text)

    def _status(self, text: str, *, ms: int = 4500) -> None:
        try:
            sb = getattr(self._window, "statusBar", None)
            if callable(sb):
                sb = sb()
            if sb is not None and hasattr(sb, "showMessage"):
                sb.showMessage(text, ms)
        except Exception:
            logger.debug("Notification display failed", exc_info=True)

    def _alert(self, text: str) -> None:
        if QMessageBox is None:
            return
        try:
            QMessageBox.critical(self._window, "Error", text)
        except Exception:
            logger.debug("Message box failed", exc_info=True)

    @staticmethod
    def _join_message(title_or_message: str, message: str | None = None) -> str:
        if message is None:
            return title_or_message
        return f"{title_or_message}: {message}" if title_or_message else message

    def info(self, title_or_message: str, message: str | None = None) -> None:
        self.show(Notice("info", title_or_message, message or ""))

    def warning(self, title_or_message: str, message: str | None = None) -> None:
        self.show(Notice("warning", title_or_message, message or ""))

    def error(self, title_or_message: str, message: str | None = None) -> None:
        self.show(Notice("error", title_or_message, message or "", persistent=True))
