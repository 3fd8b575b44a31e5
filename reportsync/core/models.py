"""Data model of the job status synchronization engine.

Everything here is an immutable value. Jobs change only through the
reconciler, which produces new instances with :func:`dataclasses.replace`.
"""

from __future__ import annotations

import itertools
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Union

from reportsync.core.errors import MessageFormatError


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


def status_rank(status: JobStatus) -> int:
    """Default ordering: PENDING < IN_PROGRESS < any terminal status."""
    if status is JobStatus.PENDING:
        return 0
    if status is JobStatus.IN_PROGRESS:
        return 1
    return 2


class FileType(str, Enum):
    USER_ACTIVITY_REPORT = "USER_ACTIVITY_REPORT"
    SYSTEM_HEALTH_REPORT = "SYSTEM_HEALTH_REPORT"
    FILE_STATISTICS_REPORT = "FILE_STATISTICS_REPORT"
    CUSTOM_REPORT = "CUSTOM_REPORT"


class EventSource(str, Enum):
    PUSH = "push"
    POLL = "poll"
    LOCAL = "local"


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# --- Identity ---


@dataclass(frozen=True, slots=True)
class ProvisionalId:
    """Client-side placeholder id used until the server assigns one."""

    local_id: str


@dataclass(frozen=True, slots=True)
class CommittedId:
    job_id: str


JobKey = Union[ProvisionalId, CommittedId]

_provisional_seq = itertools.count(1)


def new_provisional_id(prefix: str = "pending") -> ProvisionalId:
    millis = int(time.time() * 1000)
    return ProvisionalId(local_id=f"{prefix}-{millis}-{next(_provisional_seq)}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)  # noqa: UP017 (py310 compat)


# --- Parsing helpers ---


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)  # noqa: UP017
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise MessageFormatError(f"Invalid timestamp: {value!r}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)  # noqa: UP017
    raise MessageFormatError(f"Invalid timestamp: {value!r}")


def parse_status(value: Any) -> JobStatus:
    if isinstance(value, JobStatus):
        return value
    try:
        return JobStatus(str(value).upper())
    except ValueError as e:
        raise MessageFormatError(f"Unknown job status: {value!r}") from e


def parse_file_type(value: Any) -> FileType | None:
    if value is None or value == "":
        return None
    if isinstance(value, FileType):
        return value
    try:
        return FileType(str(value).upper())
    except ValueError as e:
        raise MessageFormatError(f"Unknown file type: {value!r}") from e


def parse_progress(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageFormatError(f"Invalid progress: {value!r}")
    return max(0, min(100, int(round(value))))


def parse_size(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MessageFormatError(f"Invalid file size: {value!r}")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


# --- Jobs ---


@dataclass(frozen=True, slots=True)
class Job:
    key: JobKey
    file_type: FileType | None
    status: JobStatus
    created_at: datetime
    progress: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    failure_reason: str | None = None
    completed_at: datetime | None = None
    file_data_available: bool = False

    @property
    def job_id(self) -> str:
        if isinstance(self.key, CommittedId):
            return self.key.job_id
        return self.key.local_id

    @property
    def is_provisional(self) -> bool:
        return isinstance(self.key, ProvisionalId)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Job:
        """Build a committed job from the server's JSON representation."""
        if not isinstance(data, Mapping):
            raise MessageFormatError(f"Job payload must be an object, got {type(data).__name__}")
        job_id = _optional_str(data.get("jobId"))
        if job_id is None:
            raise MessageFormatError("Job payload has no jobId")
        status = parse_status(data.get("status"))
        available = data.get("fileDataAvailable")
        return cls(
            key=CommittedId(job_id),
            file_type=parse_file_type(data.get("fileType")),
            status=status,
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            progress=parse_progress(data.get("progress")),
            file_name=_optional_str(data.get("fileName")),
            file_size=parse_size(data.get("fileSize")),
            failure_reason=_optional_str(data.get("failureReason")),
            completed_at=parse_timestamp(data.get("completedAt")),
            file_data_available=status is JobStatus.COMPLETED if available is None else bool(available),
        )


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """A single observation of a job's status from one channel."""

    job_id: str
    status: JobStatus
    source: EventSource
    observed_at: datetime = field(default_factory=utcnow)
    progress: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    error_message: str | None = None
    file_type: FileType | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    file_data_available: bool | None = None

    @classmethod
    def from_job(cls, job: Job, source: EventSource) -> StatusEvent:
        return cls(
            job_id=job.job_id,
            status=job.status,
            source=source,
            progress=job.progress,
            file_name=job.file_name,
            file_size=job.file_size,
            error_message=job.failure_reason,
            file_type=job.file_type,
            created_at=job.created_at,
            completed_at=job.completed_at,
            file_data_available=job.file_data_available,
        )

    @classmethod
    def from_message(cls, data: Mapping[str, Any], source: EventSource = EventSource.PUSH) -> StatusEvent:
        """Parse a push message body (already JSON-decoded)."""
        if not isinstance(data, Mapping):
            raise MessageFormatError(f"Message must be an object, got {type(data).__name__}")
        job_id = _optional_str(data.get("jobId"))
        if job_id is None:
            raise MessageFormatError("Message has no jobId")
        return cls(
            job_id=job_id,
            status=parse_status(data.get("status")),
            source=source,
            observed_at=parse_timestamp(data.get("updatedAt")) or utcnow(),
            progress=parse_progress(data.get("progress")),
            file_name=_optional_str(data.get("fileName")),
            file_size=parse_size(data.get("fileSize")),
            error_message=_optional_str(data.get("errorMessage")),
            file_type=parse_file_type(data.get("fileType")),
        )


# --- Listing ---


@dataclass(frozen=True, slots=True)
class Pagination:
    page: int = 0
    size: int = 10
    total_items: int = 0
    total_pages: int = 0


@dataclass(frozen=True, slots=True)
class JobPage:
    jobs: tuple[Job, ...]
    total_items: int
    total_pages: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobPage:
        if not isinstance(data, Mapping):
            raise MessageFormatError("Paged response must be an object")
        rows = data.get("jobs") or []
        if not isinstance(rows, list):
            raise MessageFormatError("Paged response 'jobs' must be a list")
        return cls(
            jobs=tuple(Job.from_dict(row) for row in rows),
            total_items=int(data.get("totalItems", len(rows)) or 0),
            total_pages=int(data.get("totalPages", 0) or 0),
        )


@dataclass(frozen=True, slots=True)
class JobListView:
    jobs: tuple[Job, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)


@dataclass(frozen=True, slots=True)
class DownloadedFile:
    job_id: str
    filename: str
    content_type: str
    content: bytes

    def save(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / Path(self.filename).name
        target.write_bytes(self.content)
        return target


# --- Report requests ---


@dataclass(frozen=True, slots=True)
class UserActivityReportRequest:
    start_date: int
    file_type: FileType = field(default=FileType.USER_ACTIVITY_REPORT, init=False)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.file_type.value, "startDate": self.start_date}


@dataclass(frozen=True, slots=True)
class SystemHealthReportRequest:
    include_detailed_metrics: bool = False
    file_type: FileType = field(default=FileType.SYSTEM_HEALTH_REPORT, init=False)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.file_type.value, "includeDetailedMetrics": self.include_detailed_metrics}


@dataclass(frozen=True, slots=True)
class FileStatisticsReportRequest:
    include_historical_data: bool = False
    file_type: FileType = field(default=FileType.FILE_STATISTICS_REPORT, init=False)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.file_type.value, "includeHistoricalData": self.include_historical_data}


@dataclass(frozen=True, slots=True)
class CustomReportRequest:
    report_name: str
    file_type: FileType = field(default=FileType.CUSTOM_REPORT, init=False)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.file_type.value, "reportName": self.report_name}


ReportRequest = Union[
    UserActivityReportRequest,
    SystemHealthReportRequest,
    FileStatisticsReportRequest,
    CustomReportRequest,
]
