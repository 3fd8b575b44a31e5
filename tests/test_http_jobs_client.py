from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from reportsync.core.errors import InfrastructureError, IntegrationError, MessageFormatError
from reportsync.core.models import CustomReportRequest, JobStatus
from reportsync.services.adapters import HttpJobsClient, SessionCredentials
from reportsync.services.adapters.http_jobs_client import filename_from_disposition


def _client(handler, token: str | None = "token-1") -> HttpJobsClient:
    return HttpJobsClient(
        "http://api.test/",
        SessionCredentials(token),
        transport=httpx.MockTransport(handler),
    )


def _run(client: HttpJobsClient, call):
    async def scenario():
        try:
            return await call(client)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_get_job_parses_payload_and_sends_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "jobId": "J1",
                "fileType": "USER_ACTIVITY_REPORT",
                "status": "IN_PROGRESS",
                "createdAt": "2024-01-01T10:00:00Z",
                "progress": 40,
            },
        )

    job = _run(_client(handler), lambda c: c.get_job("J1"))

    assert job.job_id == "J1"
    assert job.status is JobStatus.IN_PROGRESS
    assert job.progress == 40
    assert seen[0].url.path == "/api/files/job/J1"
    assert seen[0].headers["Authorization"] == "Bearer token-1"


def test_list_jobs_sends_paging_params() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/files/recent"
        assert request.url.params["page"] == "2"
        assert request.url.params["size"] == "5"
        return httpx.Response(
            200,
            json={
                "jobs": [{"jobId": "J1", "status": "COMPLETED", "createdAt": "2024-01-01T10:00:00Z"}],
                "totalItems": 11,
                "totalPages": 3,
                "currentPage": 2,
                "pageSize": 5,
            },
        )

    page = _run(_client(handler), lambda c: c.list_jobs(2, 5))

    assert [job.job_id for job in page.jobs] == ["J1"]
    assert page.total_items == 11
    assert page.total_pages == 3


def test_generate_posts_request_payload() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/files/generate"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"jobId": "J7"})

    job_id = _run(_client(handler), lambda c: c.generate_job(CustomReportRequest(report_name="weekly")))

    assert job_id == "J7"
    assert bodies == [{"type": "CUSTOM_REPORT", "reportName": "weekly"}]


def test_cancel_and_retry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/files/cancel/J1":
            return httpx.Response(200, json={"cancelled": True})
        if request.url.path == "/api/files/retry/J1":
            return httpx.Response(200, json={"jobId": "J2"})
        return httpx.Response(404)

    async def calls(c: HttpJobsClient):
        return await c.cancel_job("J1"), await c.retry_job("J1")

    assert _run(_client(handler), calls) == (True, "J2")


def test_download_uses_content_disposition_filename() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=b"a,b\n",
            headers={"Content-Disposition": 'attachment; filename="activity.csv"', "Content-Type": "text/csv"},
        )

    downloaded = _run(_client(handler), lambda c: c.download_job("J1"))

    assert downloaded.filename == "activity.csv"
    assert downloaded.content == b"a,b\n"
    assert downloaded.content_type == "text/csv"


def test_filename_defaults() -> None:
    assert filename_from_disposition(None, "report-J1.csv") == "report-J1.csv"
    assert filename_from_disposition("attachment", "report-J1.csv") == "report-J1.csv"
    assert filename_from_disposition("attachment; filename=plain.csv", "x") == "plain.csv"


def test_handshake_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/csrf"
        return httpx.Response(200, json={"token": "abc", "headerName": "X-XSRF-TOKEN"})

    assert _run(_client(handler), lambda c: c.fetch_handshake_token()) == "abc"


def test_error_response_becomes_integration_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Job not found"})

    with pytest.raises(IntegrationError) as exc_info:
        _run(_client(handler), lambda c: c.get_job("missing"))

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Job not found"


def test_network_failure_becomes_infrastructure_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(InfrastructureError):
        _run(_client(handler), lambda c: c.get_job("J1"))


def test_missing_job_id_is_a_format_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(MessageFormatError):
        _run(_client(handler), lambda c: c.generate_job(CustomReportRequest(report_name="x")))


def test_no_auth_header_without_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"token": "t"})

    _run(_client(handler, token=None), lambda c: c.fetch_handshake_token())

    assert "Authorization" not in seen[0].headers
