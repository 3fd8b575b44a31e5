"""Merge point of the push and polling channels.

Every status observation, whatever its channel, goes through
:meth:`JobStatusReconciler.ingest`. The reconciler keeps one canonical
:class:`Job` per key and applies a monotonic state machine:

    UNKNOWN -> PENDING -> IN_PROGRESS -> {COMPLETED | FAILED | CANCELLED}

Terminal statuses are absorbing. Events that are behind the current status
are dropped, same-status events merge their fields, and a merge that changes
nothing is not re-emitted. The reconciler is an always-available sink: it
never raises out of ``ingest``.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

from reportsync.core.errors import MessageFormatError
from reportsync.core.events import EventBus, JobCommitted, JobUpdated, Subscription
from reportsync.core.models import (
    CommittedId,
    EventSource,
    FileType,
    Job,
    JobKey,
    JobStatus,
    ProvisionalId,
    StatusEvent,
    new_provisional_id,
    parse_progress,
    parse_size,
    status_rank,
    utcnow,
)

logger = logging.getLogger(__name__)

TerminalHook = Callable[[Job], None]


class JobStatusReconciler:
    def __init__(
        self,
        event_bus: EventBus,
        *,
        ordering: Callable[[JobStatus], int] = status_rank,
        retired_limit: int = 256,
    ) -> None:
        self._bus = event_bus
        self._rank = ordering
        self._jobs: dict[JobKey, Job] = {}
        self._commits: dict[ProvisionalId, str] = {}
        # Recently evicted terminal jobs, so late events still see them as finished.
        self._retired: OrderedDict[JobKey, Job] = OrderedDict()
        self._retired_limit = max(0, retired_limit)
        self._terminal_hooks: list[TerminalHook] = []

    # --- Queries ---

    def get(self, key: JobKey | str) -> Job | None:
        if isinstance(key, str):
            key = CommittedId(key)
        return self._jobs.get(key) or self._retired.get(key)

    def committed_id(self, provisional: ProvisionalId) -> str | None:
        return self._commits.get(provisional)

    def updates(self, handler: Callable[[Job], None]) -> Subscription:
        """Subscribe to the canonical per-job change stream."""
        return self._bus.subscribe(JobUpdated, lambda e: handler(e.job))

    def add_terminal_hook(self, hook: TerminalHook) -> Callable[[], None]:
        """hook(job) runs once per job, on its first terminal status."""
        self._terminal_hooks.append(hook)

        def _remove() -> None:
            try:
                self._terminal_hooks.remove(hook)
            except ValueError:
                return

        return _remove

    # --- Provisional jobs ---

    def seed_provisional(
        self, file_type: FileType | None, *, provisional: ProvisionalId | None = None
    ) -> Job:
        key = provisional or new_provisional_id()
        job = Job(key=key, file_type=file_type, status=JobStatus.PENDING, created_at=utcnow())
        self._jobs[key] = job
        self._bus.publish(JobUpdated(job))
        return job

    def commit(self, provisional: ProvisionalId, job_id: str) -> Job | None:
        """Swap a provisional job for its committed id.

        If the server already reported the committed job (a list refresh can
        race the submit response), the further-along state wins.
        """
        placeholder = self._jobs.pop(provisional, None)
        if placeholder is None:
            logger.warning("Commit for unknown provisional job %s", provisional.local_id)
            return None
        key = CommittedId(job_id)
        existing = self._jobs.get(key) or self._retired.pop(key, None)
        if existing is not None:
            job = replace(
                existing,
                file_type=existing.file_type or placeholder.file_type,
            )
        else:
            job = replace(placeholder, key=key)
        self._jobs[key] = job
        self._commits[provisional] = job_id
        logger.info(
            "Job %s committed as %s", provisional.local_id, job_id, extra={"job_id": job_id}
        )
        self._bus.publish(JobCommitted(provisional=provisional, job=job))
        self._bus.publish(JobUpdated(job))
        return job

    def fail_provisional(self, provisional: ProvisionalId, reason: str) -> Job | None:
        """The submit call failed; the placeholder becomes a FAILED job."""
        placeholder = self._jobs.get(provisional)
        if placeholder is None or placeholder.is_terminal:
            return None
        job = replace(placeholder, status=JobStatus.FAILED, failure_reason=reason)
        self._jobs[provisional] = job
        self._bus.publish(JobUpdated(job))
        return job

    # --- Eviction ---

    def discard(self, key: JobKey) -> None:
        """Forget a job. Terminal committed jobs move to the retired cache."""
        job = self._jobs.pop(key, None)
        if job is None:
            return
        if isinstance(key, CommittedId):
            for provisional in [p for p, job_id in self._commits.items() if job_id == key.job_id]:
                del self._commits[provisional]
            if job.is_terminal and self._retired_limit:
                self._retired[key] = job
                self._retired.move_to_end(key)
                while len(self._retired) > self._retired_limit:
                    self._retired.popitem(last=False)

    def prune(self, keep: Iterable[JobKey]) -> int:
        """Evict every terminal job whose key is not in keep. Returns the count."""
        keep = set(keep)
        stale = [key for key, job in self._jobs.items() if job.is_terminal and key not in keep]
        for key in stale:
            self.discard(key)
        if stale:
            logger.debug("Evicted %d finished jobs", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._jobs)

    # --- Ingest ---

    def ingest(self, event: Any) -> Job | None:
        """Apply one status event. Returns the new canonical job if it changed."""
        try:
            checked = self._validate(event)
            key = CommittedId(checked.job_id)
            current = self._jobs.get(key)
            if current is None and key in self._retired:
                current = self._retired.pop(key)
                self._jobs[key] = current
            merged = self._merge(current, checked)
            if merged is None or merged == current:
                return None
            self._jobs[key] = merged
        except MessageFormatError as e:
            logger.warning("Dropping malformed status event: %s", e.message)
            return None
        except Exception:
            logger.exception("Dropping status event after unexpected error")
            return None

        logger.debug(
            "Job %s -> %s",
            merged.job_id,
            merged.status.value,
            extra={"job_id": merged.job_id, "status": merged.status.value, "source": checked.source.value},
        )
        self._bus.publish(JobUpdated(merged))
        if merged.is_terminal and (current is None or not current.is_terminal):
            self._fire_terminal(merged)
        return merged

    def _validate(self, event: Any) -> StatusEvent:
        if not isinstance(event, StatusEvent):
            raise MessageFormatError(f"Expected StatusEvent, got {type(event).__name__}")
        if not isinstance(event.job_id, str) or not event.job_id:
            raise MessageFormatError("Status event without job id")
        if not isinstance(event.status, JobStatus):
            raise MessageFormatError(f"Status event with invalid status {event.status!r}")
        if not isinstance(event.source, EventSource):
            raise MessageFormatError(f"Status event with invalid source {event.source!r}")
        return replace(
            event,
            progress=parse_progress(event.progress),
            file_size=parse_size(event.file_size),
        )

    def _merge(self, current: Job | None, event: StatusEvent) -> Job | None:
        if current is None:
            progress = 100 if event.status is JobStatus.COMPLETED else event.progress
            return Job(
                key=CommittedId(event.job_id),
                file_type=event.file_type,
                status=event.status,
                created_at=event.created_at or event.observed_at,
                progress=progress,
                file_name=event.file_name,
                file_size=event.file_size,
                failure_reason=event.error_message,
                completed_at=_completed_at(event, None),
                file_data_available=_data_available(event, False),
            )

        cur_rank = self._rank(current.status)
        new_rank = self._rank(event.status)
        if new_rank < cur_rank:
            logger.debug(
                "Stale %s event for job %s (current %s)",
                event.status.value,
                event.job_id,
                current.status.value,
                extra={"job_id": event.job_id, "source": event.source.value},
            )
            return None

        if current.is_terminal:
            if event.status is not current.status:
                logger.info(
                    "Ignoring %s for job %s: already %s",
                    event.status.value,
                    event.job_id,
                    current.status.value,
                    extra={"job_id": event.job_id, "source": event.source.value},
                )
                return None
            # Terminal jobs only get metadata backfilled.
            return replace(
                current,
                file_type=current.file_type or event.file_type,
                file_name=current.file_name or event.file_name,
                file_size=current.file_size if current.file_size is not None else event.file_size,
                failure_reason=current.failure_reason or event.error_message,
                completed_at=current.completed_at or event.completed_at,
                file_data_available=current.file_data_available or bool(event.file_data_available),
            )

        progress = event.progress if event.progress is not None else current.progress
        if event.status is current.status and current.progress is not None and progress is not None:
            progress = max(current.progress, progress)
        if event.status is JobStatus.COMPLETED:
            progress = 100
        return replace(
            current,
            status=event.status,
            file_type=current.file_type or event.file_type,
            progress=progress,
            file_name=event.file_name or current.file_name,
            file_size=event.file_size if event.file_size is not None else current.file_size,
            failure_reason=event.error_message or current.failure_reason,
            completed_at=_completed_at(event, current.completed_at),
            file_data_available=_data_available(event, current.file_data_available),
        )

    def _fire_terminal(self, job: Job) -> None:
        for hook in list(self._terminal_hooks):
            try:
                hook(job)
            except Exception:
                logger.exception("Terminal hook failed", extra={"job_id": job.job_id})


def _completed_at(event: StatusEvent, known: datetime | None) -> datetime | None:
    # Push messages carry no completion time; the observation time of the
    # terminal update stands in for it.
    if event.completed_at is not None:
        return event.completed_at
    if known is None and event.status.is_terminal:
        return event.observed_at
    return known


def _data_available(event: StatusEvent, known: bool) -> bool:
    if event.file_data_available is not None:
        return event.file_data_available
    return known or event.status is JobStatus.COMPLETED
