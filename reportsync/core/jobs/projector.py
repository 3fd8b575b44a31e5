"""Newest-first projection of the current job list page."""

from __future__ import annotations

import asyncio
import logging

from reportsync.application.ports.jobs_api import JobQueryPort
from reportsync.core.events import (
    EventBus,
    JobCommitted,
    JobListChanged,
    JobUpdated,
    Notice,
    ObservableValue,
)
from reportsync.core.jobs.reconciler import JobStatusReconciler
from reportsync.core.models import (
    EventSource,
    Job,
    JobListView,
    JobStatus,
    Pagination,
    ProvisionalId,
    StatusEvent,
)
from reportsync.core.tasks import TaskRunner

logger = logging.getLogger(__name__)


class JobSetProjector:
    """Keeps the visible job list in step with the reconciler.

    Individual job changes are applied as they happen. A background loop
    re-reads the page from the server every ``refresh_interval_sec``, or every
    ``active_refresh_interval_sec`` while a listed job is still running. Every
    server row goes through the reconciler first, so a stale listing never
    moves a job backwards. Rows that did not change keep their identity.
    """

    def __init__(
        self,
        query: JobQueryPort,
        reconciler: JobStatusReconciler,
        event_bus: EventBus,
        *,
        page: int = 0,
        size: int = 10,
        refresh_interval_sec: float = 15.0,
        active_refresh_interval_sec: float = 5.0,
    ) -> None:
        self._query = query
        self._reconciler = reconciler
        self._bus = event_bus
        self._refresh_interval = refresh_interval_sec
        self._active_refresh_interval = active_refresh_interval_sec

        self.view: ObservableValue[JobListView] = ObservableValue(
            JobListView(pagination=Pagination(page=page, size=size))
        )
        self._runner = TaskRunner("job-list")
        self._loop_task: asyncio.Task[None] | None = None
        self._cadence_changed = asyncio.Event()
        self._batching = False
        self._subs = [
            event_bus.subscribe(JobUpdated, lambda e: self.apply_event(e.job)),
            event_bus.subscribe(JobCommitted, lambda e: self.apply_commit(e.provisional, e.job)),
        ]

    @property
    def jobs(self) -> tuple[Job, ...]:
        return self.view.value.jobs

    @property
    def pagination(self) -> Pagination:
        return self.view.value.pagination

    def has_active(self) -> bool:
        return any(not job.is_terminal for job in self.jobs)

    def refresh_interval(self) -> float:
        return self._active_refresh_interval if self.has_active() else self._refresh_interval

    # --- Incremental updates ---

    def apply_event(self, job: Job) -> None:
        if self._batching:
            return
        rows = list(self.jobs)
        for i, row in enumerate(rows):
            if row.key == job.key:
                if row is job:
                    return
                rows[i] = job
                self._publish(rows, self.pagination)
                return
        if job.is_provisional and self.pagination.page == 0:
            rows.insert(0, job)
            self._publish(rows, self.pagination)

    def apply_commit(self, provisional: ProvisionalId, job: Job) -> None:
        """Replace the provisional row in place and drop any duplicate of job."""
        if self._batching:
            return
        rows = list(self.jobs)
        index = next((i for i, row in enumerate(rows) if row.key == provisional), None)
        if index is None:
            self.apply_event(job)
            return
        rows[index] = job
        rows = [row for i, row in enumerate(rows) if i == index or row.key != job.key]
        self._publish(rows, self.pagination)

    # --- Server refresh ---

    async def refresh(self) -> JobListView:
        """Load the current page from the server and merge it."""
        page, size = self.pagination.page, self.pagination.size
        try:
            result = await self._query.list_jobs(page, size)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to load recent jobs: %s", e)
            self._bus.publish(
                Notice(level="error", summary="Error", detail=f"Failed to load recent jobs: {e}")
            )
            return self.view.value
        if (page, size) != (self.pagination.page, self.pagination.size):
            logger.debug("Discarding listing for page %d; page changed meanwhile", page)
            return self.view.value

        waiting = []
        if page == 0:
            waiting = [
                row
                for row in self.jobs
                if row.is_provisional and row.status is JobStatus.PENDING
            ]
        listed = self._without_unclaimed_submissions(result.jobs, len(waiting))

        self._batching = True
        try:
            fresh: list[Job] = []
            for row in listed:
                self._reconciler.ingest(StatusEvent.from_job(row, EventSource.POLL))
                fresh.append(self._reconciler.get(row.key) or row)
        finally:
            self._batching = False

        previous = {row.key: row for row in self.jobs}
        rows: list[Job] = []
        for job in fresh:
            old = previous.get(job.key)
            rows.append(old if old is not None and old == job else job)
        rows = waiting + rows
        self._publish(
            rows,
            Pagination(
                page=page,
                size=size,
                total_items=result.total_items,
                total_pages=result.total_pages,
            ),
        )
        self._reconciler.prune(row.key for row in self.jobs)
        return self.view.value

    def _without_unclaimed_submissions(self, listed: tuple[Job, ...], pending: int) -> list[Job]:
        """Hold back the newest rows that may belong to a submit still in flight.

        The server can list a job before its submit call returns. Until the
        placeholder commits, up to ``pending`` leading rows the reconciler has
        never seen are left out; the next refresh after the commit shows them.
        """
        rows = list(listed)
        held = 0
        while (
            held < pending
            and held < len(rows)
            and not rows[held].is_terminal
            and self._reconciler.get(rows[held].key) is None
        ):
            held += 1
        if held:
            logger.debug("Holding back %d listed job(s) until pending submits commit", held)
        return rows[held:]

    async def set_page(self, page: int, size: int | None = None) -> JobListView:
        size = self.pagination.size if size is None else size
        page = max(0, page)
        if (page, size) != (self.pagination.page, self.pagination.size):
            current = self.pagination
            self._publish(
                list(self.jobs),
                Pagination(
                    page=page,
                    size=size,
                    total_items=current.total_items,
                    total_pages=current.total_pages,
                ),
            )
        return await self.refresh()

    # --- Auto refresh ---

    def start(self) -> None:
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = self._runner.spawn(self._auto_refresh(), name="auto-refresh")

    def stop(self) -> None:
        self._runner.cancel_all()
        self._loop_task = None

    def close(self) -> None:
        self.stop()
        for sub in self._subs:
            self._bus.unsubscribe(sub)
        self._subs = []

    async def _auto_refresh(self) -> None:
        while True:
            await self.refresh()
            await self._sleep_until_due()

    async def _sleep_until_due(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            self._cadence_changed.clear()
            remaining = started + self.refresh_interval() - loop.time()
            if remaining <= 0:
                return
            try:
                await asyncio.wait_for(self._cadence_changed.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return

    def _publish(self, rows: list[Job], pagination: Pagination) -> None:
        was_active = self.has_active()
        view = JobListView(jobs=tuple(rows), pagination=pagination)
        if not self.view.set(view):
            return
        self._bus.publish(JobListChanged(view))
        if self.has_active() != was_active:
            logger.debug("List refresh interval now %.1fs", self.refresh_interval())
            self._cadence_changed.set()
