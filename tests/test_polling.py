from __future__ import annotations

import asyncio

from fakes import FakeJobsApi, eventually, make_job

from reportsync.core.events import EventBus, Notice
from reportsync.core.jobs.polling import PollingFallback
from reportsync.core.models import EventSource, JobStatus, StatusEvent


def _polling(api: FakeJobsApi, sink, bus: EventBus | None = None, **kwargs) -> PollingFallback:
    kwargs.setdefault("interval_sec", 0.01)
    kwargs.setdefault("backoff_sec", 0.001)
    kwargs.setdefault("backoff_max_sec", 0.005)
    kwargs.setdefault("backoff_jitter", 0.0)
    return PollingFallback(api, sink, bus or EventBus(), **kwargs)


def test_polls_until_terminal_then_stops_itself() -> None:
    api = FakeJobsApi()
    api.script(
        "J1",
        make_job("J1", JobStatus.PENDING),
        make_job("J1", JobStatus.IN_PROGRESS, progress=50),
        make_job("J1", JobStatus.COMPLETED, file_name="r.csv"),
    )
    events: list[StatusEvent] = []

    async def scenario() -> PollingFallback:
        polling = _polling(api, events.append)
        polling.start("J1")
        await eventually(lambda: not polling.is_polling("J1"))
        return polling

    polling = asyncio.run(scenario())

    assert [e.status for e in events] == [JobStatus.PENDING, JobStatus.IN_PROGRESS, JobStatus.COMPLETED]
    assert all(e.source is EventSource.POLL for e in events)
    assert events[-1].file_name == "r.csv"
    assert polling.active_ids == []
    assert len(api.get_calls) == 3


def test_restart_replaces_previous_loop() -> None:
    api = FakeJobsApi()
    api.script("J1", make_job("J1", JobStatus.IN_PROGRESS))

    async def scenario() -> tuple[list[str], bool]:
        polling = _polling(api, lambda _e: None, interval_sec=0.5)
        polling.start("J1")
        await asyncio.sleep(0.01)
        polling.start("J1")
        polling.start("J1")
        await asyncio.sleep(0.01)
        active = polling.active_ids
        polling.stop_all()
        await asyncio.sleep(0)
        return active, polling.is_polling("J1")

    active, still_polling = asyncio.run(scenario())

    assert active == ["J1"]
    assert still_polling is False
    # The first loop ticked once; the second was replaced before it ran.
    assert len(api.get_calls) == 2


def test_stop_prevents_further_ticks() -> None:
    api = FakeJobsApi()
    api.script("J1", make_job("J1", JobStatus.IN_PROGRESS))

    async def scenario() -> int:
        polling = _polling(api, lambda _e: None)
        polling.start("J1")
        await eventually(lambda: len(api.get_calls) >= 2)
        polling.stop("J1")
        count = len(api.get_calls)
        await asyncio.sleep(0.05)
        return len(api.get_calls) - count

    assert asyncio.run(scenario()) == 0


def test_failures_are_retried_and_escalated_once_per_streak() -> None:
    api = FakeJobsApi()
    api.script(
        "J1",
        ConnectionError("down"),
        ConnectionError("down"),
        ConnectionError("down"),
        ConnectionError("down"),
        make_job("J1", JobStatus.FAILED, failure_reason="boom"),
    )
    bus = EventBus()
    notices: list[Notice] = []
    bus.subscribe(Notice, notices.append)
    events: list[StatusEvent] = []

    async def scenario() -> None:
        polling = _polling(api, events.append, bus, max_failures=2)
        polling.start("J1")
        await eventually(lambda: not polling.is_polling("J1"))

    asyncio.run(scenario())

    assert len(api.get_calls) == 5
    assert [n.level for n in notices] == ["warning"]
    assert notices[0].summary == "Status Update"
    assert events[-1].status is JobStatus.FAILED
    assert events[-1].error_message == "boom"


def test_slow_query_times_out_and_is_retried() -> None:
    class SlowOnce(FakeJobsApi):
        def __init__(self) -> None:
            super().__init__()
            self.slow = True

        async def get_job(self, job_id: str):
            if self.slow:
                self.slow = False
                await asyncio.sleep(1.0)
            return await super().get_job(job_id)

    api = SlowOnce()
    api.script("J1", make_job("J1", JobStatus.COMPLETED))
    events: list[StatusEvent] = []

    async def scenario() -> None:
        polling = _polling(api, events.append, request_timeout_sec=0.02)
        polling.start("J1")
        await eventually(lambda: not polling.is_polling("J1"))

    asyncio.run(scenario())

    assert [e.status for e in events] == [JobStatus.COMPLETED]


def test_sink_can_stop_polling_from_inside_the_loop() -> None:
    api = FakeJobsApi()
    api.script("J1", make_job("J1", JobStatus.COMPLETED))
    holder: dict[str, PollingFallback] = {}

    def sink(event: StatusEvent) -> None:
        holder["p"].stop(event.job_id)

    async def scenario() -> bool:
        holder["p"] = _polling(api, sink)
        holder["p"].start("J1")
        await asyncio.sleep(0.02)
        return holder["p"].is_polling("J1")

    assert asyncio.run(scenario()) is False
    assert len(api.get_calls) == 1
