from __future__ import annotations

from dataclasses import dataclass

from reportsync.core.models import ConnectionState, Job, JobListView, ProvisionalId


class SyncEvent:
    """Marker base for every event the engine publishes."""

    __slots__ = ()


@dataclass(frozen=True, slots=True)
class JobUpdated(SyncEvent):
    """Canonical change of one job, emitted by the reconciler."""

    job: Job


@dataclass(frozen=True, slots=True)
class JobCommitted(SyncEvent):
    """A provisional job received its server-assigned id."""

    provisional: ProvisionalId
    job: Job


@dataclass(frozen=True, slots=True)
class JobListChanged(SyncEvent):
    view: JobListView


@dataclass(frozen=True, slots=True)
class PushUpdateReceived(SyncEvent):
    job_id: str


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged(SyncEvent):
    state: ConnectionState


@dataclass(frozen=True, slots=True)
class Notice(SyncEvent):
    """User-facing, non-blocking message.

    level is one of "info", "success", "warning", "error".
    """

    level: str
    summary: str
    detail: str = ""
    persistent: bool = False
