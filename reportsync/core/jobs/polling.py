"""Polling fallback: periodic status queries, one loop per job."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from reportsync.application.ports.jobs_api import JobQueryPort
from reportsync.core.events import EventBus, Notice
from reportsync.core.models import EventSource, StatusEvent
from reportsync.core.tasks import TaskRunner, backoff_delay

logger = logging.getLogger(__name__)

StatusSink = Callable[[StatusEvent], object]


class PollingFallback:
    """Runs a status query per job until the job is terminal or stopped.

    Starting a job that is already polled cancels the previous loop first, so
    a job never has two timers. Query failures are retried with backoff; after
    ``max_failures`` consecutive failures a warning notice is published once
    per failure streak, and polling carries on.
    """

    def __init__(
        self,
        query: JobQueryPort,
        sink: StatusSink,
        event_bus: EventBus,
        *,
        interval_sec: float = 1.0,
        request_timeout_sec: float = 10.0,
        max_failures: int = 5,
        backoff_sec: float = 0.75,
        backoff_max_sec: float = 10.0,
        backoff_jitter: float = 0.3,
    ) -> None:
        self._query = query
        self._sink = sink
        self._bus = event_bus
        self._interval = interval_sec
        self._timeout = request_timeout_sec
        self._max_failures = max(1, max_failures)
        self._backoff_sec = backoff_sec
        self._backoff_max_sec = backoff_max_sec
        self._backoff_jitter = backoff_jitter
        self._runner = TaskRunner("poll")
        self._loops: dict[str, asyncio.Task[None]] = {}

    @property
    def active_ids(self) -> list[str]:
        return [job_id for job_id, task in self._loops.items() if not task.done()]

    def is_polling(self, job_id: str) -> bool:
        task = self._loops.get(job_id)
        return task is not None and not task.done()

    def start(self, job_id: str, interval_sec: float | None = None) -> None:
        self.stop(job_id)
        interval = self._interval if interval_sec is None else interval_sec
        logger.info(
            "Polling job %s every %.2fs", job_id, interval, extra={"job_id": job_id}
        )
        self._loops[job_id] = self._runner.spawn(self._run(job_id, interval), name=job_id)

    def stop(self, job_id: str) -> None:
        task = self._loops.pop(job_id, None)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Stopping from inside the loop (terminal hook); it exits on its own.
            return
        task.cancel()
        logger.debug("Polling for job %s stopped", job_id, extra={"job_id": job_id})

    def stop_all(self) -> None:
        for job_id in list(self._loops):
            self.stop(job_id)

    async def _run(self, job_id: str, interval: float) -> None:
        failures = 0
        escalated = False
        me = asyncio.current_task()
        try:
            while True:
                try:
                    job = await asyncio.wait_for(self._query.get_job(job_id), timeout=self._timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as e:  # noqa: BLE001
                    failures += 1
                    delay = backoff_delay(
                        failures,
                        base_sec=self._backoff_sec,
                        max_sec=self._backoff_max_sec,
                        jitter=self._backoff_jitter,
                    )
                    logger.warning(
                        "Status query for job %s failed (%d in a row), retrying in %.2fs: %s",
                        job_id,
                        failures,
                        delay,
                        e,
                        extra={"job_id": job_id, "attempt": failures},
                    )
                    if failures >= self._max_failures and not escalated:
                        escalated = True
                        self._bus.publish(
                            Notice(
                                level="warning",
                                summary="Status Update",
                                detail="Having trouble checking job status. Still retrying.",
                            )
                        )
                    await asyncio.sleep(delay)
                    continue

                failures = 0
                escalated = False
                self._sink(StatusEvent.from_job(job, EventSource.POLL))
                if job.is_terminal:
                    logger.info(
                        "Job %s reached %s (via polling)",
                        job_id,
                        job.status.value,
                        extra={"job_id": job_id, "status": job.status.value},
                    )
                    return
                await asyncio.sleep(interval)
        finally:
            if self._loops.get(job_id) is me:
                self._loops.pop(job_id, None)
