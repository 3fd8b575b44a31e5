from __future__ import annotations

import asyncio

from reportsync.core.events import ObservableValue


def test_subscribe_replays_current_value() -> None:
    value = ObservableValue(1)
    seen: list[int] = []

    value.subscribe(seen.append)
    value.set(2)

    assert seen == [1, 2]


def test_set_same_value_does_not_notify() -> None:
    value = ObservableValue("a")
    seen: list[str] = []
    value.subscribe(seen.append, replay=False)

    assert value.set("a") is False
    assert value.set("b") is True
    assert seen == ["b"]


def test_unsubscribe() -> None:
    value = ObservableValue(0)
    seen: list[int] = []
    unsubscribe = value.subscribe(seen.append, replay=False)

    unsubscribe()
    unsubscribe()
    value.set(5)

    assert seen == []


def test_failing_listener_does_not_block_others() -> None:
    value = ObservableValue(0)
    seen: list[int] = []

    def broken(_v: int) -> None:
        raise ValueError("boom")

    value.subscribe(broken, replay=False)
    value.subscribe(seen.append, replay=False)
    value.set(3)

    assert seen == [3]


def test_wait_for_resolves_and_times_out() -> None:
    async def scenario() -> tuple[bool, bool, bool]:
        value = ObservableValue(0)
        already = await value.wait_for(lambda v: v == 0, timeout=0.01)
        asyncio.get_running_loop().call_later(0.01, value.set, 5)
        reached = await value.wait_for(lambda v: v == 5, timeout=1.0)
        timed_out = await value.wait_for(lambda v: v == 9, timeout=0.02)
        return already, reached, timed_out

    assert asyncio.run(scenario()) == (True, True, False)
