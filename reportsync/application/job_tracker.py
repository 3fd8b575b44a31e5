"""Job tracker: the orchestrator the UI talks to.

Starting a job seeds a provisional entry, submits the request, swaps in the
committed id and then tracks the job on both channels: push subscription and
a parallel polling loop. The first terminal status tears both down.

Jobs that show up as running in the job list (for example after a restart)
are resumed on the push channel, with polling as a fallback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from reportsync.application.ports.jobs_api import JobQueryPort
from reportsync.core.events import (
    ConnectionStateChanged,
    EventBus,
    JobListChanged,
    Notice,
    ObservableValue,
    PushUpdateReceived,
)
from reportsync.core.jobs.polling import PollingFallback
from reportsync.core.jobs.projector import JobSetProjector
from reportsync.core.jobs.reconciler import JobStatusReconciler
from reportsync.core.models import (
    ConnectionState,
    EventSource,
    Job,
    JobListView,
    JobStatus,
    ProvisionalId,
    ReportRequest,
    StatusEvent,
)
from reportsync.core.paths import get_downloads_dir
from reportsync.core.push.connection import ConnectionManager
from reportsync.core.push.subscriptions import SubscriptionRegistry
from reportsync.core.settings import SyncSettings
from reportsync.core.tasks import TaskRunner

logger = logging.getLogger(__name__)


class CorrelationHandle:
    """Links a provisional job to the id the server assigns it."""

    def __init__(self, provisional: ProvisionalId, future: asyncio.Future[str | None]) -> None:
        self.provisional = provisional
        self._future = future

    @property
    def local_id(self) -> str:
        return self.provisional.local_id

    @property
    def job_id(self) -> str | None:
        if self._future.done() and not self._future.cancelled():
            return self._future.result()
        return None

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> str | None:
        """The committed job id, or None if the submission failed."""
        return await asyncio.shield(self._future)

    def _resolve(self, job_id: str | None) -> None:
        if not self._future.done():
            self._future.set_result(job_id)


class JobTracker:
    def __init__(
        self,
        settings: SyncSettings,
        query: JobQueryPort,
        connection: ConnectionManager,
        reconciler: JobStatusReconciler,
        registry: SubscriptionRegistry,
        polling: PollingFallback,
        projector: JobSetProjector,
        event_bus: EventBus,
    ) -> None:
        self._settings = settings
        self._query = query
        self._connection = connection
        self._reconciler = reconciler
        self._registry = registry
        self._polling = polling
        self._projector = projector
        self._bus = event_bus

        self._runner = TaskRunner("tracker")
        self._tracked: set[str] = set()
        self._watchdogs: dict[str, asyncio.Task[None]] = {}
        self._handles: list[CorrelationHandle] = []
        self._closed = False

        self._remove_hook = reconciler.add_terminal_hook(self._on_terminal)
        self._subs = [
            event_bus.subscribe(PushUpdateReceived, self._on_push_update),
            event_bus.subscribe(ConnectionStateChanged, self._on_connection_state),
            event_bus.subscribe(JobListChanged, self._on_list_changed),
        ]

    # --- Queries ---

    @property
    def connection_healthy(self) -> ObservableValue[bool]:
        return self._connection.healthy

    @property
    def tracked_ids(self) -> list[str]:
        return sorted(self._tracked)

    def job_updates(self, handler: Callable[[Job], None]) -> Callable[[], None]:
        sub = self._reconciler.updates(handler)
        return lambda: self._bus.unsubscribe(sub)

    async def job_list(self, page: int = 0, size: int | None = None) -> ObservableValue[JobListView]:
        await self._projector.set_page(page, size)
        return self._projector.view

    # --- Lifecycle ---

    async def start(self) -> None:
        """Open the push channel and start refreshing the job list."""
        self._closed = False
        await self._connection.connect()
        self._projector.start()

    def close(self) -> None:
        """Stop every subscription, polling loop and timer right now."""
        self._closed = True
        for job_id in list(self._tracked):
            self.untrack(job_id)
        self._registry.unsubscribe_all()
        self._polling.stop_all()
        self._projector.stop()
        self._runner.cancel_all()
        for handle in self._handles:
            handle._resolve(None)
        self._handles.clear()
        self._remove_hook()
        for sub in self._subs:
            self._bus.unsubscribe(sub)
        self._subs = []

    async def shutdown(self) -> None:
        self.close()
        await self._connection.disconnect()
        await self._runner.join()

    # --- Commands ---

    def start_job(self, request: ReportRequest) -> CorrelationHandle:
        """Show a provisional job at once and submit the request in the background."""
        placeholder = self._reconciler.seed_provisional(request.file_type)
        logger.info(
            "Submitting %s as %s", request.file_type.value, placeholder.job_id
        )
        return self._submit(
            placeholder.key,
            lambda: self._query.generate_job(request),
            started="Report generation started",
            failed="Failed to generate report",
        )

    def retry_job(self, job_id: str) -> CorrelationHandle:
        original = self._reconciler.get(job_id)
        placeholder = self._reconciler.seed_provisional(
            original.file_type if original is not None else None
        )
        logger.info("Retrying job %s as %s", job_id, placeholder.job_id, extra={"job_id": job_id})
        return self._submit(
            placeholder.key,
            lambda: self._query.retry_job(job_id),
            started="Report generation restarted",
            failed="Failed to retry job",
        )

    async def cancel_job(self, job_id: str) -> bool:
        try:
            cancelled = await self._query.cancel_job(job_id)
        except Exception as e:  # noqa: BLE001
            logger.warning("Cancel of job %s failed: %s", job_id, e, extra={"job_id": job_id})
            self._bus.publish(Notice("error", "Error", f"Failed to cancel job: {e}"))
            return False
        if not cancelled:
            self._bus.publish(Notice("warning", "Cancel", "The job could not be cancelled."))
            return False
        self._reconciler.ingest(
            StatusEvent(job_id=job_id, status=JobStatus.CANCELLED, source=EventSource.LOCAL)
        )
        self._bus.publish(Notice("info", "Cancelled", "Job cancelled successfully"))
        return True

    async def download_job(self, job_id: str, directory: Path | None = None) -> Path | None:
        try:
            downloaded = await self._query.download_job(job_id)
            target = await asyncio.to_thread(downloaded.save, directory or get_downloads_dir())
        except Exception as e:  # noqa: BLE001
            logger.warning("Download of job %s failed: %s", job_id, e, extra={"job_id": job_id})
            self._bus.publish(Notice("error", "Download Failed", str(e)))
            return None
        logger.info("Job %s saved to %s", job_id, target, extra={"job_id": job_id})
        self._bus.publish(Notice("success", "Download Complete", f"Saved {target.name}"))
        return target

    async def track(self, job_id: str, *, resumed: bool = False) -> bool:
        """Follow job_id on the push channel (and by polling unless resumed)."""
        if not self._begin_tracking(job_id, resumed=resumed):
            return False
        await self._attach_push(job_id)
        return True

    def untrack(self, job_id: str) -> None:
        self._tracked.discard(job_id)
        self._registry.unsubscribe(job_id)
        self._polling.stop(job_id)
        self._disarm_watchdog(job_id)

    # --- Internals ---

    def _submit(
        self,
        provisional: ProvisionalId,
        call: Callable[[], Awaitable[str]],
        *,
        started: str,
        failed: str,
    ) -> CorrelationHandle:
        handle = CorrelationHandle(provisional, asyncio.get_running_loop().create_future())
        self._handles.append(handle)
        self._runner.spawn(self._run_submit(handle, call, started, failed), name=provisional.local_id)
        return handle

    async def _run_submit(
        self,
        handle: CorrelationHandle,
        call: Callable[[], Awaitable[str]],
        started: str,
        failed: str,
    ) -> None:
        try:
            job_id = await call()
        except Exception as e:  # noqa: BLE001
            logger.warning("%s: %s", failed, e)
            self._reconciler.fail_provisional(handle.provisional, str(e))
            self._bus.publish(Notice("error", "Error", f"{failed}: {e}"))
            self._finish(handle, None)
            return

        # Own the id before the commit makes it visible in the job list.
        if not self._begin_tracking(job_id, resumed=False):
            # Already resumed from a listing: a started job still gets polled.
            self._ensure_polling(job_id)
        self._reconciler.commit(handle.provisional, job_id)
        self._finish(handle, job_id)
        self._bus.publish(Notice("success", "Success", started))
        if job_id in self._tracked:
            await self._attach_push(job_id)

    def _finish(self, handle: CorrelationHandle, job_id: str | None) -> None:
        handle._resolve(job_id)
        if handle in self._handles:
            self._handles.remove(handle)

    def _begin_tracking(self, job_id: str, *, resumed: bool) -> bool:
        if self._closed or job_id in self._tracked:
            return False
        job = self._reconciler.get(job_id)
        if job is not None and job.is_terminal:
            return False
        self._tracked.add(job_id)
        logger.info(
            "Tracking job %s%s", job_id, " (resumed)" if resumed else "", extra={"job_id": job_id}
        )
        if not resumed:
            self._polling.start(job_id, self._settings.poll_interval_sec)
        return True

    async def _attach_push(self, job_id: str) -> None:
        subscribed = await self._registry.subscribe(job_id)
        if job_id not in self._tracked:
            # Reached a terminal status while subscribing.
            self._registry.unsubscribe(job_id)
            return
        if subscribed:
            self._arm_watchdog(job_id)
            return
        logger.info(
            "Push unavailable for job %s; relying on polling", job_id, extra={"job_id": job_id}
        )
        self._ensure_polling(job_id)

    def _ensure_polling(self, job_id: str) -> None:
        if job_id in self._tracked and not self._polling.is_polling(job_id):
            self._polling.start(job_id, self._settings.fallback_poll_interval_sec)

    def _arm_watchdog(self, job_id: str) -> None:
        self._disarm_watchdog(job_id)
        if self._settings.push_silence_timeout_sec <= 0:
            return
        self._watchdogs[job_id] = self._runner.spawn(
            self._push_silence(job_id), name=f"silence:{job_id}"
        )

    def _disarm_watchdog(self, job_id: str) -> None:
        task = self._watchdogs.pop(job_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _push_silence(self, job_id: str) -> None:
        await asyncio.sleep(self._settings.push_silence_timeout_sec)
        self._watchdogs.pop(job_id, None)
        if job_id not in self._tracked:
            return
        logger.warning(
            "No push update for job %s in %.0fs",
            job_id,
            self._settings.push_silence_timeout_sec,
            extra={"job_id": job_id},
        )
        self._bus.publish(
            Notice(
                "info",
                "Status Update",
                "Real-time updates are delayed. Checking job status periodically.",
            )
        )
        self._ensure_polling(job_id)

    def _on_push_update(self, event: PushUpdateReceived) -> None:
        if event.job_id not in self._tracked:
            return
        self._arm_watchdog(event.job_id)
        if self._settings.stop_polling_on_push:
            self._polling.stop(event.job_id)

    def _on_connection_state(self, event: ConnectionStateChanged) -> None:
        if event.state is not ConnectionState.CLOSED:
            return
        for job_id in list(self._tracked):
            self._disarm_watchdog(job_id)
            self._ensure_polling(job_id)

    def _on_list_changed(self, event: JobListChanged) -> None:
        if self._closed or not self._settings.resume_tracking:
            return
        for job in event.view.jobs:
            if job.is_provisional or job.is_terminal or job.job_id in self._tracked:
                continue
            self._runner.spawn(self.track(job.job_id, resumed=True), name=f"resume:{job.job_id}")

    def _on_terminal(self, job: Job) -> None:
        if job.is_provisional:
            return
        job_id = job.job_id
        was_tracked = job_id in self._tracked
        self.untrack(job_id)
        if not was_tracked:
            return
        logger.info(
            "Job %s finished with %s",
            job_id,
            job.status.value,
            extra={"job_id": job_id, "status": job.status.value},
        )
        if job.status is JobStatus.COMPLETED:
            detail = f"{job.file_name} is ready to download" if job.file_name else "Report is ready"
            self._bus.publish(Notice("success", "Report Ready", detail))
        elif job.status is JobStatus.FAILED:
            reason = job.failure_reason or "Unknown error"
            self._bus.publish(Notice("warning", "Report Failed", f"Report generation failed: {reason}"))
