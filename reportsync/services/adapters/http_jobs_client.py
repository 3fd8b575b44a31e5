"""REST client for the report service.

Implements :class:`~reportsync.application.ports.jobs_api.JobQueryPort` and
:class:`~reportsync.application.ports.credentials.HandshakePort` on top of
``httpx.AsyncClient``. HTTP error responses become
:class:`~reportsync.core.errors.IntegrationError`, network failures
:class:`~reportsync.core.errors.InfrastructureError`.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from reportsync.application.ports.credentials import CredentialPort
from reportsync.core.errors import InfrastructureError, IntegrationError, MessageFormatError
from reportsync.core.models import DownloadedFile, Job, JobPage, ReportRequest
from reportsync.core.observability.timing import time_block

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)
_SLOW_REQUEST_MS = 2000.0


def filename_from_disposition(header: str | None, default: str) -> str:
    if not header:
        return default
    match = _FILENAME_RE.search(header)
    if match is None:
        return default
    name = match.group(1).strip()
    return name or default


class HttpJobsClient:
    def __init__(
        self,
        base_url: str,
        credentials: CredentialPort,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Transport ---

    def _headers(self) -> dict[str, str]:
        token = self._credentials.get_access_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        with time_block(f"{method} {path}", logger=logger, slow_ms=_SLOW_REQUEST_MS):
            try:
                response = await self._client.request(method, path, headers=self._headers(), **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise IntegrationError(
                    _error_detail(e.response), cause=e, status_code=e.response.status_code
                ) from e
            except httpx.RequestError as e:
                raise InfrastructureError(f"Request to {path} failed: {e}", cause=e) from e
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise MessageFormatError(f"{path} returned invalid JSON", cause=e) from e

    # --- HandshakePort ---

    async def fetch_handshake_token(self) -> str:
        data = await self._json("GET", "/csrf")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise MessageFormatError("Handshake response has no token")
        return str(token)

    # --- JobQueryPort ---

    async def get_job(self, job_id: str) -> Job:
        return Job.from_dict(await self._json("GET", f"/api/files/job/{job_id}"))

    async def list_jobs(self, page: int, size: int) -> JobPage:
        data = await self._json("GET", "/api/files/recent", params={"page": page, "size": size})
        return JobPage.from_dict(data)

    async def generate_job(self, request: ReportRequest) -> str:
        data = await self._json("POST", "/api/files/generate", json=request.to_payload())
        return _job_id(data)

    async def cancel_job(self, job_id: str) -> bool:
        data = await self._json("POST", f"/api/files/cancel/{job_id}", json={})
        return bool(data.get("cancelled")) if isinstance(data, dict) else False

    async def retry_job(self, job_id: str) -> str:
        return _job_id(await self._json("POST", f"/api/files/retry/{job_id}", json={}))

    async def download_job(self, job_id: str) -> DownloadedFile:
        response = await self._send("GET", f"/api/files/download/{job_id}")
        return DownloadedFile(
            job_id=job_id,
            filename=filename_from_disposition(
                response.headers.get("content-disposition"), f"report-{job_id}.csv"
            ),
            content_type=response.headers.get("content-type", "application/octet-stream"),
            content=response.content,
        )


def _job_id(data: Any) -> str:
    job_id = data.get("jobId") if isinstance(data, dict) else None
    if not job_id:
        raise MessageFormatError("Response has no jobId")
    return str(job_id)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "detail", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code} from {response.request.url.path}"
