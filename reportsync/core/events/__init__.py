"""Lightweight in-process event bus.

The engine publishes job, list, connection and notice events; the UI layer
subscribes.
"""

from .event_bus import EventBus, Subscription
from .job_events import (
    ConnectionStateChanged,
    JobCommitted,
    JobListChanged,
    JobUpdated,
    Notice,
    PushUpdateReceived,
    SyncEvent,
)
from .observable import ObservableValue

__all__ = [
    "EventBus",
    "Subscription",
    "ObservableValue",
    "SyncEvent",
    "JobUpdated",
    "JobCommitted",
    "JobListChanged",
    "PushUpdateReceived",
    "ConnectionStateChanged",
    "Notice",
]
