"""Hand-written fakes for the engine's ports."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from reportsync.application.ports.push import PushMessage
from reportsync.core.models import (
    CommittedId,
    ConnectionState,
    DownloadedFile,
    FileType,
    Job,
    JobPage,
    JobStatus,
    ReportRequest,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_job(job_id: str, status: JobStatus = JobStatus.PENDING, **kwargs: Any) -> Job:
    kwargs.setdefault("file_type", FileType.USER_ACTIVITY_REPORT)
    kwargs.setdefault("created_at", T0)
    return Job(key=CommittedId(job_id), status=status, **kwargs)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


class _FakeWatch:
    def __init__(self, transport: FakePushTransport, destination: str) -> None:
        self._transport = transport
        self.destination = destination
        self.active = True

    def unsubscribe(self) -> None:
        self.active = False
        self._transport.watches.pop(self.destination, None)


class FakePushTransport:
    """In-memory push transport.

    With ``auto_open`` the connection opens as soon as ``connect`` is called;
    without it the connection stays CONNECTING until :meth:`open` is called.
    """

    def __init__(self, *, auto_open: bool = True, fail_connect: bool = False) -> None:
        self.auto_open = auto_open
        self.fail_connect = fail_connect
        self.state = ConnectionState.CLOSED
        self.connect_calls: list[tuple[str, dict[str, str]]] = []
        self.disconnect_calls = 0
        self.watches: dict[str, Callable[[PushMessage], None]] = {}
        self.published: list[tuple[str, str]] = []
        self._listeners: list[Callable[[Any], None]] = []

    def add_state_listener(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _set_state(self, state: Any) -> None:
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    async def connect(self, url: str, headers: Mapping[str, str]) -> None:
        self.connect_calls.append((url, dict(headers)))
        if self.fail_connect:
            raise ConnectionError("connection refused")
        if self.auto_open:
            self._set_state(ConnectionState.OPEN)

    def open(self) -> None:
        self._set_state(ConnectionState.OPEN)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.watches.clear()
        if self.state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self.watches.clear()
        self._set_state(ConnectionState.CLOSED)

    def watch(self, destination: str, handler: Callable[[PushMessage], None]) -> _FakeWatch:
        if self.state is not ConnectionState.OPEN:
            raise RuntimeError("not connected")
        self.watches[destination] = handler
        return _FakeWatch(self, destination)

    def publish(self, destination: str, body: str) -> None:
        self.published.append((destination, body))

    def deliver(self, destination: str, body: Mapping[str, Any] | str) -> None:
        text = body if isinstance(body, str) else json.dumps(body)
        handler = self.watches.get(destination)
        if handler is not None:
            handler(PushMessage(destination=destination, body=text))


class FakeHandshake:
    def __init__(self, token: str = "xsrf-token", *, fail: bool = False) -> None:
        self.token = token
        self.fail = fail
        self.calls = 0

    async def fetch_handshake_token(self) -> str:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("csrf endpoint down")
        return self.token


class FakeJobsApi:
    """Scripted job service.

    ``responses[job_id]`` is a list of Job or Exception values returned by
    successive ``get_job`` calls; the last entry repeats.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[Job | Exception]] = {}
        self.get_calls: list[str] = []
        self.pages: list[JobPage | Exception] = []
        self.list_calls: list[tuple[int, int]] = []
        self.generate_results: list[str | Exception] = []
        self.generate_calls: list[ReportRequest] = []
        self.generate_gate: asyncio.Event | None = None
        self.retry_results: list[str | Exception] = []
        self.cancel_result: bool | Exception = True
        self.download_result: DownloadedFile | Exception | None = None

    def script(self, job_id: str, *items: Job | Exception) -> None:
        self.responses[job_id] = list(items)

    async def get_job(self, job_id: str) -> Job:
        self.get_calls.append(job_id)
        queue = self.responses.get(job_id)
        if not queue:
            raise LookupError(f"no scripted response for {job_id}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def list_jobs(self, page: int, size: int) -> JobPage:
        self.list_calls.append((page, size))
        if not self.pages:
            return JobPage(jobs=(), total_items=0, total_pages=0)
        item = self.pages.pop(0) if len(self.pages) > 1 else self.pages[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_job(self, request: ReportRequest) -> str:
        self.generate_calls.append(request)
        if self.generate_gate is not None:
            await self.generate_gate.wait()
        result = self.generate_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def retry_job(self, job_id: str) -> str:
        result = self.retry_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel_job(self, job_id: str) -> bool:
        if isinstance(self.cancel_result, Exception):
            raise self.cancel_result
        return self.cancel_result

    async def download_job(self, job_id: str) -> DownloadedFile:
        if isinstance(self.download_result, Exception):
            raise self.download_result
        if self.download_result is None:
            raise LookupError(job_id)
        return self.download_result
