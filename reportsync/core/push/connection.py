"""Push-channel lifecycle: connect, authenticate, reconnect.

One :class:`ConnectionManager` exists per application session. The container
creates it at login and closes it at logout; consumers get it injected.
"""

from __future__ import annotations

import asyncio
import logging

from reportsync.application.ports.credentials import CredentialPort, HandshakePort
from reportsync.application.ports.push import PushTransport
from reportsync.core.events import ConnectionStateChanged, EventBus, Notice, ObservableValue
from reportsync.core.models import ConnectionState
from reportsync.core.tasks import TaskRunner

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Owns the shared push connection.

    - Every attempt fetches a fresh handshake token and the current access token.
    - An unexpected close schedules retries every ``reconnect_delay_sec`` for as
      long as the session is alive.
    - A token refresh tears the connection down and reopens it with the new token.
    - Reconnects are serialized: a second request while one runs is a no-op.
    """

    def __init__(
        self,
        transport: PushTransport,
        credentials: CredentialPort,
        handshake: HandshakePort,
        event_bus: EventBus,
        *,
        url: str,
        reconnect_delay_sec: float = 5.0,
        max_failed_reconnects: int = 3,
        heartbeat_ms: int = 5000,
        connect_timeout_sec: float = 5.0,
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._handshake = handshake
        self._bus = event_bus
        self._url = url
        self._reconnect_delay = reconnect_delay_sec
        self._max_failed = max(1, max_failed_reconnects)
        self._heartbeat_ms = heartbeat_ms
        self._connect_timeout = connect_timeout_sec

        self.state: ObservableValue[ConnectionState] = ObservableValue(ConnectionState.CLOSED)
        self.healthy: ObservableValue[bool] = ObservableValue(False)

        self._runner = TaskRunner("push")
        self._session_active = False
        self._reconnecting = False
        self._retry_task: asyncio.Task[None] | None = None
        self._failed_attempts = 0
        self._error_shown = False

        self._unsubscribe_transport = transport.add_state_listener(self._on_transport_state)
        self._unsubscribe_refresh = credentials.on_token_refreshed(self._on_token_refreshed)

    # --- Public API ---

    @property
    def is_open(self) -> bool:
        return self.state.value is ConnectionState.OPEN

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    async def connect(self) -> None:
        """Start the session and open the connection (retries in background)."""
        self._session_active = True
        if self.is_open:
            return
        if not await self._open():
            self._schedule_retry()

    async def disconnect(self) -> None:
        """End the session: no more retries, connection closed."""
        self._session_active = False
        self._cancel_retry()
        self._runner.cancel_all()
        try:
            await self._transport.disconnect()
        except Exception:
            logger.warning("Error while closing push connection", exc_info=True)
        self._set_state(ConnectionState.CLOSED)

    async def reconnect(self) -> None:
        """Tear down and reopen with the current credentials."""
        if self._reconnecting:
            return
        if not self._session_alive():
            logger.info("Reconnect skipped: session is not active")
            return
        self._reconnecting = True
        opened = False
        logger.info("Reconnecting push channel")
        try:
            try:
                await self._transport.disconnect()
            except Exception:
                logger.warning("Error while closing push connection", exc_info=True)
            opened = await self._open()
        finally:
            self._reconnecting = False
        if not opened or self.state.value is ConnectionState.CLOSED:
            self._schedule_retry()

    async def ensure_connected(self, timeout: float | None = None) -> bool:
        """True once OPEN; False if that does not happen within timeout."""
        if self.is_open:
            return True
        if (
            self.state.value is ConnectionState.CLOSED
            and self._session_alive()
            and not self._retry_pending()
        ):
            self._runner.spawn(self.reconnect(), name="reconnect")
        wait = self._connect_timeout if timeout is None else timeout
        ok = await self.state.wait_for(lambda s: s is ConnectionState.OPEN, timeout=wait)
        if not ok:
            logger.warning("Push connection not established within %.1fs", wait)
        return ok

    def close(self) -> None:
        """Detach from the transport and the credential provider."""
        self._session_active = False
        self._cancel_retry()
        self._runner.cancel_all()
        self._unsubscribe_transport()
        self._unsubscribe_refresh()

    # --- Internals ---

    def _session_alive(self) -> bool:
        return self._session_active and self._credentials.is_authenticated()

    def _set_state(self, state: ConnectionState) -> None:
        if self.state.set(state):
            self._bus.publish(ConnectionStateChanged(state))
        self.healthy.set(state is ConnectionState.OPEN)

    async def _open(self) -> bool:
        """One connection attempt. False if it could not even be started."""
        if not self._session_alive():
            logger.info("Not connecting: no authenticated session")
            return False
        token = self._credentials.get_access_token()
        if not token:
            logger.error("No access token available for push connection")
            return False
        self._set_state(ConnectionState.CONNECTING)
        try:
            handshake = await self._handshake.fetch_handshake_token()
        except Exception as e:  # noqa: BLE001
            logger.warning("Handshake token fetch failed: %s", e)
            self._set_state(ConnectionState.CLOSED)
            return False
        headers = {
            "Authorization": f"Bearer {token}",
            "X-XSRF-TOKEN": handshake,
            "heart-beat": f"{self._heartbeat_ms},{self._heartbeat_ms}",
        }
        logger.info("Connecting to push channel at %s", self._url)
        try:
            await self._transport.connect(self._url, headers)
        except Exception as e:  # noqa: BLE001
            logger.warning("Push connection attempt failed: %s", e)
            self._set_state(ConnectionState.CLOSED)
            return False
        return True

    def _on_transport_state(self, state: ConnectionState) -> None:
        self._set_state(state)
        if state is ConnectionState.OPEN:
            logger.info("Push connection established", extra={"state": state.value})
            self._failed_attempts = 0
            self._error_shown = False
            return
        if state is ConnectionState.CLOSED and not self._reconnecting and self._session_alive():
            logger.warning("Push connection closed", extra={"state": state.value})
            self._schedule_retry()

    def _on_token_refreshed(self) -> None:
        logger.info("Access token refreshed; reconnecting push channel")
        try:
            self._runner.spawn(self.reconnect(), name="token-refresh")
        except RuntimeError:
            logger.warning("Token refreshed outside the event loop; reconnect skipped")

    def _retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def _schedule_retry(self) -> None:
        if self._retry_pending() or not self._session_alive():
            return
        try:
            self._retry_task = self._runner.spawn(self._retry_loop(), name="retry")
        except RuntimeError:
            logger.warning("No running event loop; reconnect not scheduled")

    def _cancel_retry(self) -> None:
        if self._retry_task is not None and self._retry_task is not asyncio.current_task():
            self._retry_task.cancel()
        self._retry_task = None

    async def _retry_loop(self) -> None:
        while self._session_alive() and not self.is_open:
            await asyncio.sleep(self._reconnect_delay)
            if not self._session_alive() or self.is_open:
                return
            if self._reconnecting:
                continue
            started = await self._open()
            if started and await self.state.wait_for(
                lambda s: s is ConnectionState.OPEN, timeout=self._connect_timeout
            ):
                return
            self._record_failure()

    def _record_failure(self) -> None:
        self._failed_attempts += 1
        logger.warning(
            "Reconnect attempt %d failed",
            self._failed_attempts,
            extra={"attempt": self._failed_attempts},
        )
        if self._failed_attempts >= self._max_failed and not self._error_shown:
            self._error_shown = True
            logger.error("Failed to connect after %d attempts", self._failed_attempts)
            self._bus.publish(
                Notice(
                    level="error",
                    summary="Connection Error",
                    detail="Could not establish real-time connection. Job status will be updated by polling.",
                    persistent=True,
                )
            )
