"""Per-job push subscriptions on the shared connection."""

from __future__ import annotations

import asyncio
import json
import logging

from reportsync.application.ports.push import PushMessage, PushTransport, WatchHandle
from reportsync.core.errors import MessageFormatError
from reportsync.core.events import EventBus, PushUpdateReceived
from reportsync.core.jobs.reconciler import JobStatusReconciler
from reportsync.core.models import ConnectionState, StatusEvent
from reportsync.core.push.connection import ConnectionManager
from reportsync.core.tasks import TaskRunner

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Tracks which jobs are watched on the push channel.

    A job the registry owns is in one of three states: live (a watch handle
    exists), in flight (waiting for the connection), or dormant (the
    connection dropped). Dormant jobs are watched again as soon as the
    connection is OPEN.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        transport: PushTransport,
        reconciler: JobStatusReconciler,
        event_bus: EventBus,
        *,
        connect_timeout_sec: float = 5.0,
        updates_destination: str = "/user/queue/job-updates/{job_id}",
        control_destination: str = "/app/subscribe-job",
    ) -> None:
        self._connection = connection
        self._transport = transport
        self._reconciler = reconciler
        self._bus = event_bus
        self._connect_timeout = connect_timeout_sec
        self._updates_destination = updates_destination
        self._control_destination = control_destination

        self._runner = TaskRunner("subscribe")
        self._wanted: set[str] = set()
        self._handles: dict[str, WatchHandle] = {}
        self._inflight: dict[str, asyncio.Task[bool]] = {}
        self._unsubscribe_state = connection.state.subscribe(
            self._on_connection_state, replay=False
        )

    @property
    def active_ids(self) -> list[str]:
        return list(self._handles)

    @property
    def dormant_ids(self) -> list[str]:
        return [
            job_id
            for job_id in self._wanted
            if job_id not in self._handles and job_id not in self._inflight
        ]

    def is_active(self, job_id: str) -> bool:
        return job_id in self._handles

    async def subscribe(self, job_id: str) -> bool:
        """Watch job_id. False when the connection could not be established."""
        self._wanted.add(job_id)
        if job_id in self._handles:
            return True
        task = self._inflight.get(job_id)
        if task is None:
            task = self._runner.spawn(self._subscribe(job_id), name=job_id)
            self._inflight[job_id] = task
            task.add_done_callback(lambda t, j=job_id: self._forget_inflight(j, t))
        return await asyncio.shield(task)

    def unsubscribe(self, job_id: str) -> None:
        self._wanted.discard(job_id)
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return
        try:
            handle.unsubscribe()
        except Exception:
            logger.warning("Failed to unsubscribe from job %s", job_id, exc_info=True)
        logger.info("Unsubscribed from job %s", job_id, extra={"job_id": job_id})

    def unsubscribe_all(self) -> None:
        for job_id in list(self._wanted | set(self._handles)):
            self.unsubscribe(job_id)
        self._runner.cancel_all()

    def close(self) -> None:
        self.unsubscribe_all()
        self._unsubscribe_state()

    # --- Internals ---

    def _forget_inflight(self, job_id: str, task: asyncio.Task[bool]) -> None:
        if self._inflight.get(job_id) is task:
            del self._inflight[job_id]

    async def _subscribe(self, job_id: str) -> bool:
        if not await self._connection.ensure_connected(self._connect_timeout):
            logger.warning(
                "Push connection unavailable; job %s not subscribed", job_id, extra={"job_id": job_id}
            )
            return False
        if job_id not in self._wanted:
            return False
        if job_id in self._handles:
            return True
        return self._watch(job_id)

    def _watch(self, job_id: str) -> bool:
        destination = self._updates_destination.format(job_id=job_id)
        try:
            handle = self._transport.watch(
                destination, lambda message: self._on_message(job_id, message)
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to watch %s: %s", destination, e, extra={"job_id": job_id})
            return False
        self._handles[job_id] = handle
        try:
            self._transport.publish(self._control_destination, json.dumps({"jobId": job_id}))
        except Exception:
            logger.warning("Subscribe request for job %s was not sent", job_id, exc_info=True)
        logger.info("Subscribed to job %s", job_id, extra={"job_id": job_id})
        return True

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.OPEN:
            dormant = self.dormant_ids
            if dormant:
                logger.info("Re-subscribing %d job(s) after reconnect", len(dormant))
            for job_id in dormant:
                self._watch(job_id)
        elif state is ConnectionState.CLOSED and self._handles:
            # Watches die with the connection.
            logger.info("Connection closed; %d subscription(s) now dormant", len(self._handles))
            self._handles.clear()

    def _on_message(self, job_id: str, message: PushMessage) -> None:
        if job_id not in self._handles:
            logger.debug("Late push message for job %s dropped", job_id, extra={"job_id": job_id})
            return
        try:
            event = StatusEvent.from_message(json.loads(message.body))
        except (ValueError, MessageFormatError) as e:
            logger.warning(
                "Dropping malformed push message on %s: %s",
                message.destination,
                e,
                extra={"job_id": job_id, "source": "push"},
            )
            return
        if event.job_id != job_id:
            logger.warning(
                "Push message for job %s arrived on the destination of job %s; dropped",
                event.job_id,
                job_id,
                extra={"job_id": job_id},
            )
            return

        self._bus.publish(PushUpdateReceived(job_id))
        self._reconciler.ingest(event)
        if event.status.is_terminal:
            self.unsubscribe(job_id)
