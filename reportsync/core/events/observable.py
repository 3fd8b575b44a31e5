"""Observable value: the latest state plus change notifications.

Used where consumers need the current value on subscribe (connection state,
connection health, the visible job list) rather than a stream of events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class ObservableValue(Generic[T]):
    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> bool:
        """Store value and notify listeners. Returns False when nothing changed."""
        if value == self._value:
            return False
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Observable listener failed")
        return True

    def subscribe(self, listener: Callable[[T], None], *, replay: bool = True) -> Unsubscribe:
        self._listeners.append(listener)
        if replay:
            listener(self._value)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return

        return _unsubscribe

    async def wait_for(self, predicate: Callable[[T], bool], timeout: float | None) -> bool:
        """Wait until predicate(value) holds. Returns False on timeout."""
        if predicate(self._value):
            return True
        fut: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        def _check(value: T) -> None:
            if not fut.done() and predicate(value):
                fut.set_result(True)

        unsubscribe = self.subscribe(_check, replay=False)
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()
