"""Application port for the push (publish/subscribe) transport.

The wire protocol lives behind this interface. The engine only opens and
closes the connection, watches per-job destinations and publishes control
messages.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from reportsync.core.models import ConnectionState

Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class PushMessage:
    destination: str
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)


class WatchHandle(Protocol):
    def unsubscribe(self) -> None:
        ...


class PushTransport(Protocol):
    @property
    def state(self) -> ConnectionState:
        ...

    def add_state_listener(self, listener: Callable[[ConnectionState], None]) -> Unsubscribe:
        ...

    async def connect(self, url: str, headers: Mapping[str, str]) -> None:
        """Start connecting; OPEN is reported through the state listeners."""

    async def disconnect(self) -> None:
        ...

    def watch(self, destination: str, handler: Callable[[PushMessage], None]) -> WatchHandle:
        ...

    def publish(self, destination: str, body: str) -> None:
        ...
