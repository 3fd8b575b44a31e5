from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SessionCredentials:
    """In-memory credential holder.

    The host application's auth flow calls :meth:`set_access_token` after
    login and after every silent renewal; the engine only reads.
    """

    def __init__(self, access_token: str | None = None) -> None:
        self._token = access_token
        self._listeners: list[Callable[[], None]] = []

    def get_access_token(self) -> str | None:
        return self._token

    def is_authenticated(self) -> bool:
        return bool(self._token)

    def set_access_token(self, token: str) -> None:
        renewed = self._token is not None and token != self._token
        self._token = token
        if not renewed:
            return
        logger.info("Access token renewed")
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Token refresh listener failed")

    def logout(self) -> None:
        self._token = None

    def on_token_refreshed(self, handler: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(handler)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(handler)
            except ValueError:
                return

        return _unsubscribe
