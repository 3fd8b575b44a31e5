"""Application port for the job REST service."""

from __future__ import annotations

from typing import Protocol

from reportsync.core.models import DownloadedFile, Job, JobPage, ReportRequest


class JobQueryPort(Protocol):
    async def get_job(self, job_id: str) -> Job:
        ...

    async def list_jobs(self, page: int, size: int) -> JobPage:
        ...

    async def generate_job(self, request: ReportRequest) -> str:
        """Submit a report request; returns the server-assigned job id."""

    async def cancel_job(self, job_id: str) -> bool:
        ...

    async def retry_job(self, job_id: str) -> str:
        """Resubmit a job; returns the id of the new job."""

    async def download_job(self, job_id: str) -> DownloadedFile:
        ...
