"""Push channel: the shared connection and per-job subscriptions."""

from .connection import ConnectionManager
from .subscriptions import SubscriptionRegistry

__all__ = ["ConnectionManager", "SubscriptionRegistry"]
