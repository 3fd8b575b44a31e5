"""Composition root / DI container.

One container per application session: it is created after login and
closed with :meth:`Container.aclose` at logout. The push transport is a
host-provided object (the wire protocol client) and must be injected.
"""

from __future__ import annotations

from reportsync.application.job_tracker import JobTracker
from reportsync.application.ports.credentials import CredentialPort, HandshakePort
from reportsync.application.ports.jobs_api import JobQueryPort
from reportsync.application.ports.push import PushTransport
from reportsync.core.events import EventBus
from reportsync.core.jobs.polling import PollingFallback
from reportsync.core.jobs.projector import JobSetProjector
from reportsync.core.jobs.reconciler import JobStatusReconciler
from reportsync.core.push.connection import ConnectionManager
from reportsync.core.push.subscriptions import SubscriptionRegistry
from reportsync.core.settings import SyncSettings, load_settings
from reportsync.services.adapters import HttpJobsClient, SessionCredentials


class Container:
    """Resolves engine services lazily. Single place to swap implementations."""

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        credentials: CredentialPort | None = None,
        transport: PushTransport | None = None,
        jobs_api: JobQueryPort | None = None,
        handshake: HandshakePort | None = None,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._transport = transport
        self._jobs_api = jobs_api
        self._handshake = handshake
        self._http_client: HttpJobsClient | None = None
        self._event_bus: EventBus | None = None
        self._connection: ConnectionManager | None = None
        self._reconciler: JobStatusReconciler | None = None
        self._registry: SubscriptionRegistry | None = None
        self._polling: PollingFallback | None = None
        self._projector: JobSetProjector | None = None
        self._tracker: JobTracker | None = None

    @property
    def settings(self) -> SyncSettings:
        if self._settings is None:
            self._settings = load_settings()
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        if self._event_bus is None:
            self._event_bus = EventBus()
        return self._event_bus

    @property
    def credentials(self) -> CredentialPort:
        if self._credentials is None:
            self._credentials = SessionCredentials()
        return self._credentials

    @property
    def http_client(self) -> HttpJobsClient:
        if self._http_client is None:
            self._http_client = HttpJobsClient(
                self.settings.api_base_url,
                self.credentials,
                timeout=self.settings.poll_request_timeout_sec,
            )
        return self._http_client

    @property
    def jobs_api(self) -> JobQueryPort:
        if self._jobs_api is None:
            self._jobs_api = self.http_client
        return self._jobs_api

    @property
    def handshake(self) -> HandshakePort:
        if self._handshake is None:
            self._handshake = self.http_client
        return self._handshake

    @property
    def transport(self) -> PushTransport:
        if self._transport is None:
            raise RuntimeError("PushTransport must be injected by the host application")
        return self._transport

    def set_transport(self, transport: PushTransport) -> None:
        if self._connection is not None:
            raise RuntimeError("PushTransport cannot be replaced once the connection exists")
        self._transport = transport

    @property
    def connection(self) -> ConnectionManager:
        if self._connection is None:
            s = self.settings
            self._connection = ConnectionManager(
                self.transport,
                self.credentials,
                self.handshake,
                self.event_bus,
                url=s.ws_url,
                reconnect_delay_sec=s.reconnect_delay_sec,
                max_failed_reconnects=s.max_failed_reconnects,
                heartbeat_ms=s.heartbeat_ms,
                connect_timeout_sec=s.connect_timeout_sec,
            )
        return self._connection

    @property
    def reconciler(self) -> JobStatusReconciler:
        if self._reconciler is None:
            self._reconciler = JobStatusReconciler(self.event_bus)
        return self._reconciler

    @property
    def subscriptions(self) -> SubscriptionRegistry:
        if self._registry is None:
            s = self.settings
            self._registry = SubscriptionRegistry(
                self.connection,
                self.transport,
                self.reconciler,
                self.event_bus,
                connect_timeout_sec=s.connect_timeout_sec,
                updates_destination=s.updates_destination,
                control_destination=s.control_destination,
            )
        return self._registry

    @property
    def polling(self) -> PollingFallback:
        if self._polling is None:
            s = self.settings
            self._polling = PollingFallback(
                self.jobs_api,
                self.reconciler.ingest,
                self.event_bus,
                interval_sec=s.poll_interval_sec,
                request_timeout_sec=s.poll_request_timeout_sec,
                max_failures=s.poll_max_failures,
                backoff_sec=s.poll_backoff_sec,
                backoff_max_sec=s.poll_backoff_max_sec,
                backoff_jitter=s.poll_backoff_jitter,
            )
        return self._polling

    @property
    def projector(self) -> JobSetProjector:
        if self._projector is None:
            s = self.settings
            self._projector = JobSetProjector(
                self.jobs_api,
                self.reconciler,
                self.event_bus,
                size=s.page_size,
                refresh_interval_sec=s.list_refresh_sec,
                active_refresh_interval_sec=s.active_list_refresh_sec,
            )
        return self._projector

    @property
    def tracker(self) -> JobTracker:
        if self._tracker is None:
            self._tracker = JobTracker(
                self.settings,
                self.jobs_api,
                self.connection,
                self.reconciler,
                self.subscriptions,
                self.polling,
                self.projector,
                self.event_bus,
            )
        return self._tracker

    async def aclose(self) -> None:
        """Tear the session down: tracking, push connection, HTTP client."""
        if self._tracker is not None:
            await self._tracker.shutdown()
        if self._polling is not None:
            self._polling.stop_all()
        if self._registry is not None:
            self._registry.close()
        if self._projector is not None:
            self._projector.close()
        if self._connection is not None:
            await self._connection.disconnect()
            self._connection.close()
        if self._http_client is not None:
            await self._http_client.aclose()
        if self._event_bus is not None:
            self._event_bus.clear()
